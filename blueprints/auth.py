from flask import Blueprint, jsonify, request, session, current_app
from flask_login import login_user, logout_user, login_required, current_user
import logging

from extensions import db
from models import User
from rewards.chain import get_permits
from rewards.errors import InvalidReferral
from rewards.referral_tree import ReferralTreeHelper
from utils import normalize_address, is_valid_address


logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


#===========================================================================
#      WALLET LOGIN
#==============================================================================
@bp.route("/wallet-login", methods=["POST"])
def wallet_login():
    """
    Log in with a wallet address, registering it on first sight.
    The signed-message check happens upstream; this endpoint only binds the identity.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"success": False, "error": "Invalid or missing JSON body"}), 400

    wallet_address = (data.get("walletAddress") or "").strip()
    if not is_valid_address(wallet_address):
        return jsonify({"success": False, "error": "Invalid wallet address"}), 400
    wallet = normalize_address(wallet_address)

    user = User.query.filter_by(wallet_address=wallet).first()
    created = False
    if user is None:
        referrer_id = data.get("referrerId")
        if referrer_id:
            try:
                referrer_id = int(referrer_id)
            except (TypeError, ValueError):
                raise InvalidReferral("referrerId must be an integer", referrer_id=referrer_id)
        user = ReferralTreeHelper.add_new_user(
            wallet,
            referrer_id=referrer_id or None,
            email=(data.get("email") or "").strip().lower() or None,
        )
        db.session.commit()
        created = True

    if not user.is_active:
        return jsonify({"success": False, "error": "Account is inactive"}), 403

    login_user(user)
    session["user_id"] = user.id
    current_app.logger.info(f"Wallet login user={user.id} created={created}")

    return jsonify({"success": True, "created": created, "user": user.to_dict()}), 201 if created else 200


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    session.pop("user_id", None)
    return jsonify({"success": True})


@bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"success": True, "user": current_user.to_dict()})


#===========================================================================
#      TOKEN PERMITS
#==============================================================================
@bp.route("/permit", methods=["POST"])
@login_required
def submit_permit():
    """Store the permit the wallet just signed for the platform spender."""
    data = request.get_json(silent=True) or {}
    required = ("spender", "value", "deadline")
    missing = [field for field in required if data.get(field) in (None, "")]
    if missing:
        return jsonify({"success": False, "error": f"Missing fields: {', '.join(missing)}"}), 400
    if not current_user.wallet_address:
        return jsonify({"success": False, "error": "No wallet connected"}), 400

    try:
        permit = get_permits().record_permit(
            owner_address=current_user.wallet_address,
            spender_address=data["spender"],
            value=data["value"],
            deadline=int(data["deadline"]),
            nonce=int(data.get("nonce") or 0),
            v=data.get("v"),
            r=data.get("r"),
            s=data.get("s"),
            user_id=current_user.id,
            token_address=data.get("token") or current_app.config.get("USDC_TOKEN_ADDRESS"),
        )
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({"success": False, "error": str(e)}), 400

    return jsonify({"success": True, "permit": permit.to_dict()}), 201
