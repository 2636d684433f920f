from django.urls import path

from . import views

app_name = "rankkeeper"

urlpatterns = [
    path("apps/", views.apps_view, name="apps"),
    path("apps/<str:app_id>/delete/", views.app_delete_view, name="app_delete"),
    path("apps/<str:app_id>/keywords/", views.keywords_add_view, name="keywords_add"),
    path(
        "apps/<str:app_id>/keywords/<str:keyword_id>/delete/",
        views.keyword_delete_view,
        name="keyword_delete",
    ),
    path("apps/<str:app_id>/rankings/", views.ranking_add_view, name="ranking_add"),
    path("apps/<str:app_id>/ratings/", views.rating_add_view, name="rating_add"),
    path("apps/<str:app_id>/reviews/", views.reviews_view, name="reviews"),
    path("search/", views.search_view, name="search"),
    path("country/", views.country_view, name="country"),
    path("reset/", views.reset_view, name="reset"),
    path("refresh/", views.refresh_view, name="refresh"),
    path("refresh/cancel/", views.refresh_cancel_view, name="refresh_cancel"),
    path("sync/", views.sync_view, name="sync"),
    path("status/", views.status_view, name="status"),
]
