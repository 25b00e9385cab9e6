from courier.api.routes import register_admission_handlers, router

__all__ = ["register_admission_handlers", "router"]
