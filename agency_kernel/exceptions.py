"""
Typed Exception Hierarchy for the Agency Finance engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, batch jobs) must map failures to responses without
parsing message strings. Every exception:
  1. Is a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes

Example:
    try:
        forecast_service.recalculate(...)
    except ForecastLockedError as e:
        return conflict(code=e.code, key=e.natural_key)
    except ValidationError as e:
        return bad_request(code=e.code, message=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AgencyFinanceError (base)
    |
    +-- ValidationError
    |   +-- MissingFieldError
    |   +-- InvalidAmountError
    |   +-- PercentageOutOfRangeError
    |   +-- InvalidMonthKeyError
    |   +-- InvalidPeriodError
    |   +-- DoubleCountingError
    |
    +-- ConflictError
    |   +-- ForecastLockedError
    |
    +-- ExchangeRateError
    |   +-- InvalidExchangeRateError
    |   +-- FxSourceError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                   | When Raised
----------------|------------------------|-----------------------------------------
Validation      | MISSING_FIELD          | Required field absent for the record type
                | INVALID_AMOUNT         | Non-numeric or negative amount
                | PERCENT_OUT_OF_RANGE   | Percentage outside [0, 100]
                | INVALID_MONTH_KEY      | month_key is not YYYY-MM
                | INVALID_PERIOD         | from_month_key > to_month_key / missing
                | DOUBLE_COUNTING        | Person shares one stream on two bases
----------------|------------------------|-----------------------------------------
Conflict        | FORECAST_LOCKED        | Overwriting a locked forecast's figures
----------------|------------------------|-----------------------------------------
Exchange Rate   | INVALID_EXCHANGE_RATE  | Rate is zero/negative/non-finite
                | FX_SOURCE_UNAVAILABLE  | Rate feed failed (never leaves FxRateCache)
----------------|------------------------|-----------------------------------------
Configuration   | INVALID_CONFIGURATION  | Settings out of range or inconsistent

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Unresolvable references (basis entry without a known person, week stat
   without a week) are NOT exceptions. They are skipped and counted.

2. FX feed outages are NOT exceptions for callers. FxRateCache catches
   FxSourceError and serves the fallback rate.

3. ForecastLockedError is a ConflictError, not a ValidationError: the input
   is valid, the target row refuses the write.
"""


class AgencyFinanceError(Exception):
    """
    Base exception for all agency finance errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "AGENCY_FINANCE_ERROR"


# Validation exceptions


class ValidationError(AgencyFinanceError):
    """Base exception for invalid caller input."""

    code: str = "INVALID_INPUT"


class MissingFieldError(ValidationError):
    """A field required for the given record type is absent."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str, context: str):
        self.field = field
        self.context = context
        super().__init__(f"{field} is required for {context}")


class InvalidAmountError(ValidationError):
    """Amount is not a finite number or violates its sign constraint."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str = "must be a non-negative number"):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"{field} {reason} (got {value!r})")


class PercentageOutOfRangeError(ValidationError):
    """Percentage outside the closed interval [0, 100]."""

    code: str = "PERCENT_OUT_OF_RANGE"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = str(value)
        super().__init__(f"{field} must be between 0 and 100 (got {value!r})")


class InvalidMonthKeyError(ValidationError):
    """month_key does not match YYYY-MM."""

    code: str = "INVALID_MONTH_KEY"

    def __init__(self, month_key: object):
        self.month_key = str(month_key)
        super().__init__(f"Invalid month_key {month_key!r}: expected YYYY-MM")


class InvalidPeriodError(ValidationError):
    """Period bounds are missing or inverted."""

    code: str = "INVALID_PERIOD"

    def __init__(self, from_month_key: str | None, to_month_key: str | None, reason: str):
        self.from_month_key = from_month_key
        self.to_month_key = to_month_key
        self.reason = reason
        super().__init__(f"Invalid period {from_month_key!r}..{to_month_key!r}: {reason}")


class DoubleCountingError(ValidationError):
    """
    A person takes a share of one revenue stream on both the total-net
    and the messages/tips-net basis.
    """

    code: str = "DOUBLE_COUNTING"

    def __init__(self, person_id: str, stream: str):
        self.person_id = person_id
        self.stream = stream
        super().__init__(
            f"Person {person_id} has both total-net and messages/tips percentages "
            f"> 0 on stream {stream!r} (double-counting)"
        )


# Conflict exceptions


class ConflictError(AgencyFinanceError):
    """Base exception for writes refused by the state of the target row."""

    code: str = "CONFLICT"


class ForecastLockedError(ConflictError):
    """
    The existing forecast for this natural key is locked.

    Only notes may change on a locked forecast.
    """

    code: str = "FORECAST_LOCKED"

    def __init__(self, natural_key: str):
        self.natural_key = natural_key
        super().__init__(f"Forecast {natural_key} is locked")


# Exchange rate exceptions


class ExchangeRateError(AgencyFinanceError):
    """Base exception for exchange rate errors."""

    code: str = "EXCHANGE_RATE_ERROR"


class InvalidExchangeRateError(ExchangeRateError):
    """Exchange rate is zero, negative, or not a finite number."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, rate_value: object, reason: str = "rate must be positive"):
        self.rate_value = str(rate_value)
        self.reason = reason
        super().__init__(f"Invalid exchange rate value {rate_value}: {reason}")


class FxSourceError(ExchangeRateError):
    """The upstream rate feed could not produce a usable rate."""

    code: str = "FX_SOURCE_UNAVAILABLE"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"FX source {source} unavailable: {reason}")


# Configuration exceptions


class ConfigurationError(AgencyFinanceError):
    """Engine settings are out of range or inconsistent."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, key: str, value: object, reason: str):
        self.key = key
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid setting {key}={value!r}: {reason}")
