from .creators import create_creator, get_creator, get_creator_by_payee_id, set_payee
from .commission_overrides import create_override, get_active_override, list_overrides_for_creator
from .earnings import (
    create_earning,
    get_earning,
    get_earning_by_source,
    list_earnings_for_creator,
    list_earnings_for_batch,
    list_eligible_earnings,
    list_unlockable_earnings,
    compare_and_swap_earning,
)
from .payouts import (
    get_batch,
    get_batch_by_idempotency_key,
    get_batch_by_external_id,
    list_batches_for_creator,
    list_batches_by_status,
    list_due_open_batches,
    compare_and_swap_batch,
)
from .bonuses import (
    create_award,
    get_award_for_period,
    list_unattached_awards,
    list_awards_for_batch,
)

__all__ = [
    "create_creator",
    "get_creator",
    "get_creator_by_payee_id",
    "set_payee",
    "create_override",
    "get_active_override",
    "list_overrides_for_creator",
    "create_earning",
    "get_earning",
    "get_earning_by_source",
    "list_earnings_for_creator",
    "list_earnings_for_batch",
    "list_eligible_earnings",
    "list_unlockable_earnings",
    "compare_and_swap_earning",
    "get_batch",
    "get_batch_by_idempotency_key",
    "get_batch_by_external_id",
    "list_batches_for_creator",
    "list_batches_by_status",
    "list_due_open_batches",
    "compare_and_swap_batch",
    "create_award",
    "get_award_for_period",
    "list_unattached_awards",
    "list_awards_for_batch",
]
