import os, sys

# ensure the project root is on sys.path so "from app import create_app" works
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app import create_app
from listing import DonationListRenderer

app = create_app()

with app.app_context():
    view = DonationListRenderer(app.extensions['donation_store']).load()
    if view.error:
        print(view.error)
        sys.exit(1)
    if view.empty:
        print(view.placeholder)
    for card in view.cards:
        details = ', '.join(f"{label}: {value}" for label, value in card.rows)
        print(f"{card.timestamp_label} | {card.type_label} | {card.donor_name} <{card.donor_email}> | {details}")
