from typing import Optional


class ValidationError(ValueError):
    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        self.message = message or "invalid value"
        super().__init__(f"{field}: {self.message}")


class UnsupportedPromotionError(ValueError):
    def __init__(self, promotion_type: object):
        self.promotion_type = promotion_type
        super().__init__(f"unsupported promotion type: {promotion_type!r}")


class NotFoundWarning(UserWarning):
    """line item 已不存在：操作按 no-op 处理"""
