from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_decimal(x) -> Decimal:
    # 经 str 转换，避免二进制浮点误差带入 Decimal
    return x if isinstance(x, Decimal) else Decimal(str(x))


def money(x) -> float:
    """四舍五入到分（ROUND_HALF_UP），返回 float。"""
    return float(to_decimal(x).quantize(CENT, rounding=ROUND_HALF_UP))


def format_currency(amount: float) -> str:
    return f"${money(amount):.2f}"
