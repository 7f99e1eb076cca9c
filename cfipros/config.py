import os


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Config:
    """Settings read from the environment each time an app is created."""

    @staticmethod
    def from_env() -> dict:
        return {
            "SECRET_KEY": os.environ.get("SECRET_KEY", "dev-secret-key"),
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,

            # Auth / storage backend. Missing values degrade to a logged no-op.
            "SUPABASE_URL": os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL"),
            "SUPABASE_ANON_KEY": os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY"),
            "SITE_URL": os.getenv("SITE_URL", "http://localhost:3001"),
            "AUTH_COOKIE_SECURE": env_flag("AUTH_COOKIE_SECURE", "true"),

            # Payments. The key itself is validated when the Stripe client is imported.
            "STRIPE_WEBHOOK_SECRET": os.getenv("STRIPE_WEBHOOK_SECRET"),
            "STRIPE_PRICE_CFI_MONTHLY": os.getenv("STRIPE_PRICE_CFI_MONTHLY", ""),
            "STRIPE_PRICE_SCHOOL_MONTHLY": os.getenv("STRIPE_PRICE_SCHOOL_MONTHLY", ""),

            # Feature flags / analytics
            "POSTHOG_KEY": os.getenv("POSTHOG_KEY") or os.getenv("NEXT_PUBLIC_POSTHOG_KEY"),
            "POSTHOG_HOST": os.getenv("POSTHOG_HOST", "https://us.posthog.com"),

            # Uploads
            "UPLOAD_TEMP_DIR": os.getenv("UPLOAD_TEMP_DIR"),
            "MAX_CONTENT_LENGTH": int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024))),
        }
