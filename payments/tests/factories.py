import factory
from factory.django import DjangoModelFactory
from payments.models import Payment


class PaymentFactory(DjangoModelFactory):
    class Meta:
        model = Payment

    order = factory.SubFactory("orders.tests.factories.OrderFactory")
    amount = factory.LazyAttribute(lambda o: o.order.total)
    currency = factory.LazyAttribute(lambda o: o.order.currency)
    gateway = "toss_payments"
    gateway_reference = factory.Sequence(lambda n: f"order-ref-{n:06d}")


class CompletedPaymentFactory(PaymentFactory):
    status = Payment.STATUS_COMPLETED
    transaction_id = factory.Sequence(lambda n: f"txn_{n:06d}")
    approval_number = "A100"
