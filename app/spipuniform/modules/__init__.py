"""
Feature modules live under this package.

Each module owns its models/service/api, and reuses platform primitives
(auth, RBAC, audit, storage, mail, DB session).
"""
from app.spipuniform.modules.favorites.models import Favorite  # noqa: E402,F401
from app.spipuniform.modules.item_requests.models import ItemRequest  # noqa: E402,F401
from app.spipuniform.modules.family.models import FamilyMember  # noqa: E402,F401
from app.spipuniform.modules.reports.models import Report  # noqa: E402,F401
