"""ORM models for the pricing kernel."""


def import_all_models() -> None:
    """Import every model module so Base.metadata knows all tables."""
    from pricing_kernel.models import (  # noqa: F401
        approval,
        decision_package,
        rate,
        rfq,
        scenario,
    )
