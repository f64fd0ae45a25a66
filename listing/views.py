import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes, permission_classes
from rest_framework.generics import ListCreateAPIView, RetrieveUpdateDestroyAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import SAFE_METHODS, IsAuthenticated, IsAuthenticatedOrReadOnly
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from .models import Listing, ListingImage
from .serializers import (
    ImageUploadSerializer,
    ListingImageSerializer,
    ListingSearchSerializer,
    ListingSerializer,
)

logger = logging.getLogger(__name__)

SORT_ORDERING = {
    'price_asc': ('price', '-created_at', '-id'),
    'price_desc': ('-price', '-created_at', '-id'),
    'date_asc': ('created_at', 'id'),
    'date_desc': ('-created_at', '-id'),
}


def search_listings(params):
    """
    Filter available listings by the validated search parameters:
      - `query` matches title, address or description (case-insensitive),
      - `type` is an exact match,
      - price and room bounds are inclusive.
    """
    listings = Listing.objects.filter(available=True).select_related("owner")

    query = params.get('query', '').strip()
    if query:
        listings = listings.filter(
            Q(title__icontains=query) |
            Q(address__icontains=query) |
            Q(description__icontains=query)
        )

    if params.get('type'):
        listings = listings.filter(type=params['type'])

    if params.get('min_price') is not None:
        listings = listings.filter(price__gte=params['min_price'])
    if params.get('max_price') is not None:
        listings = listings.filter(price__lte=params['max_price'])
    if params.get('min_rooms') is not None:
        listings = listings.filter(rooms__gte=params['min_rooms'])
    if params.get('max_rooms') is not None:
        listings = listings.filter(rooms__lte=params['max_rooms'])

    return listings.order_by(*SORT_ORDERING[params.get('sort_by', 'date_desc')])


# =============== listings ==========================
class ListingPagination(PageNumberPagination):
    page_size = 9
    page_size_query_param = 'page_size'
    max_page_size = 100


class ListingListView(ListCreateAPIView):
    serializer_class = ListingSerializer
    pagination_class = ListingPagination
    permission_classes = [IsAuthenticatedOrReadOnly]

    @swagger_auto_schema(
        manual_parameters=[
            openapi.Parameter('query', openapi.IN_QUERY, type=openapi.TYPE_STRING, description='Search title, address and description'),
            openapi.Parameter('type', openapi.IN_QUERY, type=openapi.TYPE_STRING, description='Listing type', enum=['apartment', 'house', 'room']),
            openapi.Parameter('min_price', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter('max_price', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter('min_rooms', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter('max_rooms', openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter('sort_by', openapi.IN_QUERY, type=openapi.TYPE_STRING, description='Sort listings by', enum=ListingSearchSerializer.SORT_CHOICES),
        ]
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        params = ListingSearchSerializer(data=self.request.query_params)
        params.is_valid(raise_exception=True)
        return search_listings(params.validated_data).prefetch_related("images")

    def perform_create(self, serializer):
        listing = serializer.save(owner=self.request.user)
        logger.info("User %s created listing %s", self.request.user.id, listing.id)


class ListingDetailView(RetrieveUpdateDestroyAPIView):
    serializer_class = ListingSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    lookup_field = 'id'

    def get_queryset(self):
        listings = Listing.objects.select_related("owner").prefetch_related("images")
        # Writes by anyone but the owner look like a missing listing.
        if self.request.method not in SAFE_METHODS:
            listings = listings.filter(owner=self.request.user)
        return listings

    def perform_destroy(self, instance):
        logger.info("User %s deleted listing %s", self.request.user.id, instance.id)
        # Messages about the listing go with it (FK cascade).
        instance.delete()


@swagger_auto_schema(method="GET", responses={200: ListingSerializer(many=True)})
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def my_listings(request):
    listings = (
        Listing.objects.filter(owner=request.user)
        .select_related("owner")
        .prefetch_related("images")
        .order_by("-created_at", "-id")
    )
    return Response(ListingSerializer(listings, many=True, context={"request": request}).data)


@swagger_auto_schema(method="POST", request_body=ImageUploadSerializer, responses={201: ListingImageSerializer})
@api_view(["POST"])
@permission_classes([IsAuthenticated])
@parser_classes([MultiPartParser, FormParser])
def upload_image(request, id: int):
    listing = get_object_or_404(Listing, id=id, owner=request.user)

    serializer = ImageUploadSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    image = ListingImage.objects.create(listing=listing, image=serializer.validated_data["image"])
    if not listing.cover_img:
        listing.cover_img = image.image.name
        listing.save(update_fields=["cover_img", "updated_at"])

    return Response(
        ListingImageSerializer(image, context={"request": request}).data,
        status=status.HTTP_201_CREATED
    )
