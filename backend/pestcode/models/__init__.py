from .inventory import Medicine, MedicineStock
from .qrcode import QRCodeMaster, QRCodeSequence, QRCodeData, QRCodeScanLog

__all__ = [
    'Medicine', 'MedicineStock',
    'QRCodeMaster', 'QRCodeSequence', 'QRCodeData', 'QRCodeScanLog',
]
