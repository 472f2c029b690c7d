from decimal import Decimal, ROUND_HALF_UP

MONEY_Q = Decimal("0.01")
# Amounts that differ by at most a cent are treated as equal.
MONEY_EPS = Decimal("0.01")


def to_decimal(v) -> Decimal:
    if v is None:
        return Decimal("0")
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def q_money(v) -> Decimal:
    return to_decimal(v).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def money_equal(a, b) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= MONEY_EPS
