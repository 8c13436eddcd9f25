"""Default categories and payment modes for a scope that has none."""

from coinflow.models.ledger import Category, PaymentMode, Snapshot


DEFAULT_CATEGORY_NAMES: tuple[str, ...] = (
    "Salary",
    "Groceries",
    "Rent",
    "Utilities",
    "Consulting",
)

DEFAULT_PAYMENT_MODE_NAMES: tuple[str, ...] = (
    "Cash",
    "Bank Transfer",
    "Card",
    "Digital Wallet",
)


def default_categories() -> tuple[Category, ...]:
    return tuple(Category(name=name) for name in DEFAULT_CATEGORY_NAMES)


def default_payment_modes() -> tuple[PaymentMode, ...]:
    return tuple(PaymentMode(name=name) for name in DEFAULT_PAYMENT_MODE_NAMES)


def seed_defaults(
    snapshot: Snapshot,
) -> tuple[Snapshot, tuple[Category, ...], tuple[PaymentMode, ...]]:
    """
    Fill an empty category set and an empty payment-mode set with defaults.

    Each set is checked on its own. Returns the snapshot and the records that
    were added (empty tuples when nothing was seeded).
    """
    seeded_categories: tuple[Category, ...] = ()
    seeded_modes: tuple[PaymentMode, ...] = ()
    update = {}

    if not snapshot.categories:
        seeded_categories = default_categories()
        update["categories"] = seeded_categories
    if not snapshot.payment_modes:
        seeded_modes = default_payment_modes()
        update["payment_modes"] = seeded_modes

    if not update:
        return snapshot, seeded_categories, seeded_modes
    return snapshot.model_copy(update=update), seeded_categories, seeded_modes
