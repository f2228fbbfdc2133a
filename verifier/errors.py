from __future__ import annotations


class VerificationError(RuntimeError):
    pass


class FatalVerificationError(VerificationError):
    """Aborts the run; no later stage is worth executing."""


class UnresolvedTargetError(FatalVerificationError):
    pass


class UnreachableHostError(FatalVerificationError):
    pass


class RuntimeNotReadyError(FatalVerificationError):
    pass


class CheckFailed(VerificationError):
    pass


class CheckTimedOut(VerificationError):
    pass
