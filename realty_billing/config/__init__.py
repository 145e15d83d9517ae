from realty_billing.config.config import Config

__all__ = ["Config"]
