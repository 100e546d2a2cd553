# make_admin.py
# Usage: python make_admin.py <wallet_address>

import sys

from app import create_app
from extensions import db
from models import User
from utils import is_valid_address, normalize_address


def make_admin(wallet_address):
    if not is_valid_address(wallet_address):
        raise SystemExit(f"Not a valid wallet address: {wallet_address}")

    app = create_app()
    with app.app_context():
        wallet = normalize_address(wallet_address)
        user = User.query.filter_by(wallet_address=wallet).first()

        if user is None:
            # the wallet has never logged in; register it without a referrer
            user = User(wallet_address=wallet)
            db.session.add(user)
            print(f"No user with wallet {wallet} found, creating one.")

        user.role = "admin"
        db.session.commit()
        print(f"User (id={user.id}, wallet={wallet}) is now admin.")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        raise SystemExit("Usage: python make_admin.py <wallet_address>")
    make_admin(sys.argv[1])
