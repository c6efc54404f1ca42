from .catalog import Product, StockMovement, Customer, CustomerItemPrice, PricingRule
from .orders import Order, OrderItem, Payment, ReceiptCounter
from .delivery import DeliveryRun, RunReceipt, RunReceiptLine, RiderRunVariance, RiderCharge, RiderChargePayment
from .shifts import CashierShift, CashDrawerTxn, CustomerArPayment, CashierShiftVariance, CashierCharge

__all__ = [
    'Product', 'StockMovement', 'Customer', 'CustomerItemPrice', 'PricingRule',
    'Order', 'OrderItem', 'Payment', 'ReceiptCounter',
    'DeliveryRun', 'RunReceipt', 'RunReceiptLine', 'RiderRunVariance', 'RiderCharge', 'RiderChargePayment',
    'CashierShift', 'CashDrawerTxn', 'CustomerArPayment', 'CashierShiftVariance', 'CashierCharge',
]
