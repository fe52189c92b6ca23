"""
pricing_kernel -- persistence, domain model and write-side services for
RFQ pricing and approval.

Layers, lowest first: ``domain`` (pure value objects), ``db`` and
``models`` (SQLAlchemy), ``selectors`` (read side), ``services`` (write
side).  The kernel never imports ``pricing_engines``,
``pricing_services`` or ``pricing_config``.
"""
