from .sellers import Seller, MatType
from .codes import QRCode
from .shipments import ShipmentRequest
from .cycles import Cycle, CycleHistory
from .pickups import DriverPickup, DriverPickupItem

__all__ = [
    'Seller', 'MatType',
    'QRCode',
    'ShipmentRequest',
    'Cycle', 'CycleHistory',
    'DriverPickup', 'DriverPickupItem',
]
