from django.urls import path

from . import views, views_admin

urlpatterns = [
    path("health", views.health, name="health"),
    path("orders", views.orders, name="orders"),
    path("orders/<uuid:order_id>", views.order_detail, name="order-detail"),
    path("leads", views.leads, name="leads"),
    path("products/<str:slug>", views.product_detail, name="product-detail"),
    path("products/<str:slug>/variant", views.product_variant, name="product-variant"),
    path("admin/import", views_admin.csv_import, name="admin-import"),
    path("admin/import/wordpress", views_admin.wordpress_import, name="admin-import-wordpress"),
    path("admin/export", views_admin.export, name="admin-export"),
]
