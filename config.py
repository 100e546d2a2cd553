# ==========================================================================================================
# -------------- Configuration file for the soft-staking rewards service -----------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _database_uri(url):
    if not url:
        instance_dir = os.path.join(basedir, "instance")
        os.makedirs(instance_dir, exist_ok=True)
        return f"sqlite:///{os.path.join(instance_dir, 'staking.db')}"
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+pg8000://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+pg8000://", 1)
    return url


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY and os.getenv("FLASK_ENV", "production") == "production":
        raise ValueError("SECRET_KEY must be set in production")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")
    TESTING = False

    SQLALCHEMY_DATABASE_URI = _database_uri(os.getenv("DATABASE_URL"))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Polygon
    POLYGON_RPC_URL = os.getenv("POLYGON_RPC_URL", "https://polygon-rpc.com")
    USDC_TOKEN_ADDRESS = os.getenv("USDC_TOKEN_ADDRESS", "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359")
    USDC_DECIMALS = int(os.getenv("USDC_DECIMALS", "6"))
    RELAYER_PRIVATE_KEY = os.getenv("RELAYER_PRIVATE_KEY")
    RPC_TIMEOUT_SECONDS = int(os.getenv("RPC_TIMEOUT_SECONDS", "20"))
    TX_RECEIPT_TIMEOUT_SECONDS = int(os.getenv("TX_RECEIPT_TIMEOUT_SECONDS", "120"))

    # concurrent balance reads per snapshot
    ORACLE_POOL_SIZE = int(os.getenv("ORACLE_POOL_SIZE", "10"))

    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:10000")


class TestConfig(Config):
    TESTING = True
    DEBUG = False
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RELAYER_PRIVATE_KEY = None
    ORACLE_POOL_SIZE = 4
