from taxihub.models.activity import ActivityLog
from taxihub.models.events import Load, Meeting, Payment
from taxihub.models.marshal import MarshalProfile
from taxihub.models.principal import Principal
from taxihub.models.rank import Aisle, Fare, TaxiRank
from taxihub.models.taxi import Taxi

__all__ = [
    # Identity
    "Principal",
    "MarshalProfile",
    # Ranks
    "TaxiRank",
    "Aisle",
    "Fare",
    # Fleet
    "Taxi",
    # Events
    "Load",
    "Payment",
    "Meeting",
    # Audit
    "ActivityLog",
]
