import os

os.environ.setdefault("FLASK_ENV", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import time
from decimal import Decimal

import pytest
from flask import g

from app import create_app
from config import TestConfig
from extensions import db
from models import User
from rewards.config import RewardConfigHelper
from rewards.permits import PermitRegistry
from utils import normalize_address

SPENDER = "0x" + "f" * 40


class FakeChain:
    """In-memory stand-in for the Polygon gateway: scripted balances and transfer outcomes."""

    def __init__(self):
        self.balances = {}
        self.unreadable = set()
        self.outcomes = []
        self.transfers = []

    def set_balance(self, address, amount):
        self.balances[address] = Decimal(str(amount))

    def read_balance(self, address):
        if address in self.unreadable:
            raise ConnectionError(f"rpc unavailable for {address}")
        return self.balances.get(address, Decimal("0"))

    def transfer_out(self, destination, amount, asset="USDC"):
        self.transfers.append((destination, amount, asset))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or "0x" + "ab" * 32


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def app(chain):
    app = create_app(TestConfig, chain=chain)
    with app.app_context():
        db.create_all()
        RewardConfigHelper.seed_defaults()
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def permits(app):
    return PermitRegistry()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(referrer=None, wallet=True, role="user", is_active=True):
        counter["n"] += 1
        address = normalize_address("0x" + f"{counter['n']:040x}") if wallet else None
        user = User(
            wallet_address=address,
            referrer_id=referrer.id if referrer is not None else None,
            role=role,
            is_active=is_active,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def grant_permit(permits):
    def _grant(user, ttl=3600):
        permit = permits.record_permit(
            owner_address=user.wallet_address,
            spender_address=SPENDER,
            value="1000000000",
            deadline=int(time.time()) + ttl,
            user_id=user.id,
        )
        db.session.commit()
        return permit

    return _grant


@pytest.fixture
def login(client):
    def _login(user):
        # requests share the test's app context, so drop the cached user
        g.pop("_login_user", None)
        with client.session_transaction() as session:
            session["_user_id"] = str(user.id)
            session["_fresh"] = True
            session["user_id"] = user.id
        return client

    return _login
