from django.urls import path

from .views import ListingListView, ListingDetailView, my_listings, upload_image

urlpatterns = [
    path('api/listings/', ListingListView.as_view(), name="listings"),
    path('api/listings/mine/', my_listings, name="my_listings"),
    path('api/listings/<int:id>/', ListingDetailView.as_view(), name="listing"),
    path('api/listings/<int:id>/images/', upload_image, name="listing_images"),
]
