"""
Swagger/OpenAPI configuration for the Booking & Settlement API
"""

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs",
}

SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Wellness Booking & Settlement API",
        "description": "Availability, booking lifecycle, commission settlement, loyalty points, promo codes and flash deals for the wellness marketplace",
        "contact": {"email": "support@wellness-marketplace.example"},
        "version": "1.0.0",
    },
    "host": "",
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": 'JWT issued by the identity provider. Example: "Authorization: Bearer {token}"',
        }
    },
    "security": [{"Bearer": []}],
    "tags": [
        {"name": "Vendors", "description": "Vendor profile, hours and services"},
        {"name": "Bookings", "description": "Availability and booking lifecycle"},
        {"name": "Promos", "description": "Promo code management and validation"},
        {"name": "Loyalty", "description": "Loyalty points balance and history"},
        {"name": "Settlements", "description": "Commission, refunds and vendor payouts"},
        {"name": "Flash Deals", "description": "Time-boxed discounted slots"},
        {"name": "Maintenance", "description": "Expiry sweeps"},
        {"name": "Utility", "description": "Health check"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "error"},
                "message": {"type": "string"},
                "reason": {"type": "string", "example": "conflict"},
            },
        },
        "Booking": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "customer_id": {"type": "integer"},
                "vendor_id": {"type": "integer"},
                "service_id": {"type": "integer"},
                "add_on_service_ids": {"type": "array", "items": {"type": "integer"}},
                "date": {"type": "string", "example": "2026-05-04"},
                "time_slot": {"type": "string", "example": "10:30"},
                "duration": {"type": "integer"},
                "total_price": {"type": "number", "format": "float"},
                "discount_amount": {"type": "number", "format": "float"},
                "final_price": {"type": "number", "format": "float"},
                "commission_amount": {"type": "number", "format": "float"},
                "vendor_earnings": {"type": "number", "format": "float"},
                "status": {
                    "type": "string",
                    "enum": ["pending", "confirmed", "in_progress", "completed", "cancelled", "no_show"],
                },
                "payment_status": {
                    "type": "string",
                    "enum": ["pending", "paid", "refunded", "failed"],
                },
                "loyalty_points_earned": {"type": "integer"},
                "loyalty_points_used": {"type": "integer"},
                "promo_code": {"type": "string"},
                "cancellation_tokens": {"type": "integer"},
            },
        },
        "Transaction": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "type": {"type": "string", "enum": ["commission", "refund", "payout"]},
                "booking_id": {"type": "integer"},
                "vendor_id": {"type": "integer"},
                "amount": {"type": "number", "format": "float"},
                "commission_amount": {"type": "number", "format": "float"},
                "status": {"type": "string", "enum": ["pending", "completed", "failed", "cancelled"]},
                "created_at": {"type": "string", "format": "date-time"},
            },
        },
        "FlashDeal": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "title": {"type": "string"},
                "vendor_id": {"type": "integer"},
                "service_id": {"type": "integer"},
                "original_price": {"type": "number", "format": "float"},
                "discounted_price": {"type": "number", "format": "float"},
                "discount_percentage": {"type": "integer"},
                "start_time": {"type": "string", "format": "date-time"},
                "end_time": {"type": "string", "format": "date-time"},
                "total_slots": {"type": "integer"},
                "booked_slots": {"type": "integer"},
                "is_active": {"type": "boolean"},
            },
        },
    },
}
