from django.urls import path

from .views import InvoicePreviewView, ReconcileView

urlpatterns = [
    path('api/invoicing/preview', InvoicePreviewView.as_view(), name='invoice-preview'),
    path('api/invoicing/reconcile', ReconcileView.as_view(), name='invoice-reconcile'),
]
