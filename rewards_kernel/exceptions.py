"""
Typed exception hierarchy for the rewards kernel.

Every error has a typed class (catch by type, not message), a ``code``
class attribute (machine-readable, log-safe) and structured attributes
carrying the data that caused it.

    RewardsKernelError (base)
    |
    +-- LedgerError
    |   +-- InvalidWalletKeyError
    |   +-- InvalidAmountError
    |   +-- InsufficientBalanceError
    |   +-- LedgerConsistencyError
    |   +-- DuplicateRewardError
    |
    +-- EnrollmentError
    |   +-- EnrollmentNotFoundError
    |   +-- RewardInvariantError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- JobExecutionError
        +-- JobAlreadyClaimedError
        +-- JobExecutionNotFoundError
        +-- InvalidJobTransitionError
        +-- RunCancelledError

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Ledger          | INVALID_WALLET_KEY          | Empty customer id or wallet type
                | INVALID_AMOUNT              | Non-positive or non-Decimal amount
                | INSUFFICIENT_BALANCE        | Debit larger than wallet balance
                | LEDGER_INCONSISTENT         | balance_after != balance_before +/- amount
                | DUPLICATE_REWARD            | Enrollment already rewarded for the day
----------------|-----------------------------|-----------------------------------------
Enrollment      | ENROLLMENT_NOT_FOUND        | Enrollment ID doesn't exist
                | REWARD_INVARIANT_VIOLATED   | Progress would exceed the plan target
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of a wallet transaction
----------------|-----------------------------|-----------------------------------------
Job execution   | JOB_ALREADY_CLAIMED         | Another run owns the day's slot
                | JOB_EXECUTION_NOT_FOUND     | JobExecution ID doesn't exist
                | INVALID_JOB_TRANSITION      | Finalizing a row that is not RUNNING
                | RUN_CANCELLED               | Stop signal or deadline hit mid-run
"""

from datetime import date
from decimal import Decimal


class RewardsKernelError(Exception):
    """
    Base exception for all rewards kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "REWARDS_KERNEL_ERROR"


# Ledger-related exceptions


class LedgerError(RewardsKernelError):
    """Base exception for wallet and ledger errors."""

    code: str = "LEDGER_ERROR"


class InvalidWalletKeyError(LedgerError):
    """Wallet key (customer id, wallet type) is malformed."""

    code: str = "INVALID_WALLET_KEY"

    def __init__(self, customer_id: str | None, wallet_type: str | None):
        self.customer_id = customer_id
        self.wallet_type = wallet_type
        super().__init__(
            f"Invalid wallet key: customer_id={customer_id!r}, "
            f"wallet_type={wallet_type!r}"
        )


class InvalidAmountError(LedgerError):
    """Amount is not a positive Decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str):
        self.amount = str(amount)
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class InsufficientBalanceError(LedgerError):
    """Debit would take the wallet balance below zero."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, customer_id: str, wallet_type: str, amount: Decimal):
        self.customer_id = customer_id
        self.wallet_type = wallet_type
        self.amount = str(amount)
        super().__init__(
            f"Insufficient {wallet_type} balance for customer {customer_id} "
            f"to debit {amount}"
        )


class LedgerConsistencyError(LedgerError):
    """A transaction's before/after snapshot does not match its amount."""

    code: str = "LEDGER_INCONSISTENT"

    def __init__(
        self,
        balance_before: Decimal,
        balance_after: Decimal,
        amount: Decimal,
        transaction_type: str,
    ):
        self.balance_before = str(balance_before)
        self.balance_after = str(balance_after)
        self.amount = str(amount)
        self.transaction_type = transaction_type
        super().__init__(
            f"{transaction_type} of {amount} does not explain balance change "
            f"{balance_before} -> {balance_after}"
        )


class DuplicateRewardError(LedgerError):
    """The enrollment already holds a reward transaction for the date."""

    code: str = "DUPLICATE_REWARD"

    def __init__(self, subscription_id: str, reward_date: date):
        self.subscription_id = subscription_id
        self.reward_date = reward_date.isoformat()
        super().__init__(
            f"Enrollment {subscription_id} already rewarded for {reward_date}"
        )


# Enrollment-related exceptions


class EnrollmentError(RewardsKernelError):
    """Base exception for enrollment errors."""

    code: str = "ENROLLMENT_ERROR"


class EnrollmentNotFoundError(EnrollmentError):
    """Enrollment with given ID was not found."""

    code: str = "ENROLLMENT_NOT_FOUND"

    def __init__(self, enrollment_id: str):
        self.enrollment_id = enrollment_id
        super().__init__(f"Enrollment not found: {enrollment_id}")


class RewardInvariantError(EnrollmentError):
    """Applying the reward would push progress past the plan target."""

    code: str = "REWARD_INVARIANT_VIOLATED"

    def __init__(
        self,
        enrollment_id: str,
        current_amount: Decimal,
        reward: Decimal,
        target_amount: Decimal,
    ):
        self.enrollment_id = enrollment_id
        self.current_amount = str(current_amount)
        self.reward = str(reward)
        self.target_amount = str(target_amount)
        super().__init__(
            f"Reward {reward} on enrollment {enrollment_id} would move "
            f"progress {current_amount} past target {target_amount}"
        )


# Immutability-related exceptions


class ImmutabilityError(RewardsKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Job execution exceptions


class JobExecutionError(RewardsKernelError):
    """Base exception for job audit errors."""

    code: str = "JOB_EXECUTION_ERROR"


class JobAlreadyClaimedError(JobExecutionError):
    """Another invocation already owns the (job_name, execution_date) slot."""

    code: str = "JOB_ALREADY_CLAIMED"

    def __init__(self, job_name: str, execution_date: date, status: str | None = None):
        self.job_name = job_name
        self.execution_date = execution_date.isoformat()
        self.status = status
        detail = f" (status {status})" if status else ""
        super().__init__(
            f"Job '{job_name}' already claimed for {execution_date}{detail}"
        )


class JobExecutionNotFoundError(JobExecutionError):
    """JobExecution with given ID was not found."""

    code: str = "JOB_EXECUTION_NOT_FOUND"

    def __init__(self, job_execution_id: str):
        self.job_execution_id = job_execution_id
        super().__init__(f"Job execution not found: {job_execution_id}")


class InvalidJobTransitionError(JobExecutionError):
    """Requested status change is not allowed from the current status."""

    code: str = "INVALID_JOB_TRANSITION"

    def __init__(self, job_execution_id: str, from_status: str, to_status: str):
        self.job_execution_id = job_execution_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move job execution {job_execution_id} "
            f"from {from_status} to {to_status}"
        )


class RunCancelledError(JobExecutionError):
    """A run was stopped by its stop signal or deadline."""

    code: str = "RUN_CANCELLED"

    def __init__(self, reason: str, processed: int):
        self.reason = reason
        self.processed = processed
        super().__init__(f"Run cancelled after {processed} enrollment(s): {reason}")
