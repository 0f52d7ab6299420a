"""
Swagger/OpenAPI configuration for the salon booking engine API
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
        "title": "Salon Booking Engine API",
        "description": "Scheduling, booking flow, appointment lifecycle and payment confirmation for multi-tenant salons",
        "version": "1.0.0",
    },
    "host": "",
    "basePath": "/api",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": 'JWT Authorization header using the Bearer scheme. Example: "Authorization: Bearer {token}"',
        }
    },
    "tags": [
        {"name": "Authentication", "description": "Client sign-up, login and contact lookup"},
        {"name": "Salons", "description": "Public salon data, hours, windows and slots"},
        {"name": "Booking", "description": "Booking conversation kept in the session cookie"},
        {"name": "Appointments", "description": "Staff calendar and appointment lifecycle"},
        {"name": "Payments", "description": "Payment gateway notifications"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "error"},
                "error": {"type": "string", "example": "slot_unavailable"},
                "message": {"type": "string"},
                "details": {"type": "object"},
            },
        },
        "DayWindow": {
            "type": "object",
            "properties": {
                "closed": {"type": "boolean"},
                "open": {"type": "string", "example": "09:00"},
                "close": {"type": "string", "example": "18:00"},
            },
        },
        "Quote": {
            "type": "object",
            "properties": {
                "subtotal": {"type": "string", "example": "100.00"},
                "tax": {"type": "string", "example": "5.00"},
                "discount_percent": {"type": "integer", "example": 20},
                "discount": {"type": "string", "example": "21.00"},
                "total": {"type": "string", "example": "84.00"},
                "duration_min": {"type": "integer", "example": 60},
            },
        },
        "BookingSnapshot": {
            "type": "object",
            "properties": {
                "state": {
                    "type": "string",
                    "enum": [
                        "IDENTITY_CHECK",
                        "SERVICE_SELECTION",
                        "PROFESSIONAL_SELECTION",
                        "DATE_SELECTION",
                        "TIME_SELECTION",
                        "REVIEW_CONFIRM",
                        "PAYMENT",
                        "TERMINAL_SUCCESS",
                    ],
                },
                "identity_step": {"type": "string"},
                "actions": {"type": "array", "items": {"type": "string"}},
                "draft": {"type": "object"},
                "slots": {"type": "array", "items": {"type": "string"}},
                "quote": {"$ref": "#/definitions/Quote"},
            },
        },
        "Appointment": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "salon_id": {"type": "integer"},
                "client_id": {"type": "integer"},
                "professional_id": {"type": "integer"},
                "service_names": {"type": "string", "example": "Corte, Escova"},
                "valor": {"type": "string", "example": "52.50"},
                "date": {"type": "string", "example": "2025-06-10"},
                "time": {"type": "string", "example": "10:30"},
                "end_time": {"type": "string", "example": "11:00"},
                "duration_min": {"type": "integer"},
                "status": {
                    "type": "string",
                    "enum": ["pending", "confirmed", "completed", "canceled"],
                },
                "booked_by_ai": {"type": "boolean"},
                "payment_id": {"type": "string"},
                "payment_method": {"type": "string"},
            },
        },
    },
}
