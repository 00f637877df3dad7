from django.urls import path

from modules.tax.views import TaxCategoryListView

urlpatterns = [
    path("tax/categories/", TaxCategoryListView.as_view(), name="tax-categories"),
]
