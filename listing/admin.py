from django.contrib import admin

from .models import Listing, ListingImage


class ListingImageInline(admin.TabularInline):
    model = ListingImage
    extra = 0


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ["title", "owner", "type", "price", "rooms", "available", "created_at"]
    list_filter = ["available", "type"]
    search_fields = ["title", "address", "owner__username", "owner__email"]
    date_hierarchy = "created_at"
    inlines = [ListingImageInline]
    fieldsets = [
        (None, {"fields": ["owner", "title", "description", "address", "cover_img"]}),
        ("Details", {"fields": ["type", "price", "size", "rooms"]}),
        ("Status", {"fields": ["available"]}),
    ]
