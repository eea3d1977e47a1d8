class CouponEngineError(Exception):
    pass


class IllegalTransitionError(CouponEngineError):
    pass


class CouponValidationError(CouponEngineError):
    pass


class CouponNotFoundError(CouponEngineError):
    pass


class CouponIneligibleError(CouponEngineError):
    def __init__(self, reasons: list[str]) -> None:
        super().__init__("; ".join(reasons) or "Customer is not eligible")
        self.reasons = list(reasons)


class CouponConflictError(CouponEngineError):
    pass


class CouponAlreadyUsedError(CouponConflictError):
    pass


class CouponLimitReachedError(CouponConflictError):
    pass


class CouponExpiredError(CouponEngineError):
    pass


class CouponNotRedeemableError(CouponEngineError):
    pass


class CouponInternalError(CouponEngineError):
    pass
