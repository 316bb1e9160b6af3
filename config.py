import os
from dotenv import load_dotenv

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

load_dotenv(os.path.join(BASE_DIR, ".env"))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    # store DB under the instance/ folder
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{os.path.join(BASE_DIR, 'instance', 'roster.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR = os.environ.get("LOG_DIR", os.path.join(BASE_DIR, "logs"))

    # "loose": a paid row without a usable amount stores 0.00
    # "strict": fall back to the activity fee_amount, else reject the batch
    PAYMENT_AMOUNT_POLICY = os.environ.get("PAYMENT_AMOUNT_POLICY", "loose")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_LEVEL = "WARNING"
    LOG_DIR = None
    PAYMENT_AMOUNT_POLICY = "loose"
