"""
Seed an admin user, a starter pizza and an OAuth client from environment. No hardcoded credentials.
Optional: PIZZA_ADMIN_EMAIL + PIZZA_ADMIN_PASSWORD; OAUTH_SEED_CLIENT_ID + OAUTH_SEED_CLIENT_SECRET
(+ OAUTH_SEED_REDIRECT_URI, OAUTH_SEED_SCOPES, OAUTH_SEED_GRANT_TYPES). The client is owned by the admin.
"""
import json
import logging
import os

from pizza_api.models import OAuthClient, Pizza
from pizza_api.security import hash_secret
from pizza_api.stores import SqlCredentialStore

logger = logging.getLogger(__name__)


def seed_from_env(store: SqlCredentialStore) -> None:
    admin_id = None
    admin_email = (os.environ.get("PIZZA_ADMIN_EMAIL") or "").strip().lower()
    admin_password = os.environ.get("PIZZA_ADMIN_PASSWORD")
    if admin_email and admin_password:
        admin = store.get_user_by_email(admin_email)
        if admin is None:
            admin = store.create_user(admin_email, hash_secret(admin_password), name="Administrator", role="admin")
            logger.info("Seeded admin user id=%s", admin.id)
        else:
            logger.debug("Admin user already exists: id=%s", admin.id)
        admin_id = admin.id

    client_id = os.environ.get("OAUTH_SEED_CLIENT_ID")
    client_secret = os.environ.get("OAUTH_SEED_CLIENT_SECRET")
    if client_id and client_secret:
        if admin_id is None:
            logger.warning("OAUTH_SEED_CLIENT_ID set without an admin user to own it; skipping client seed")
        elif store.get_client(client_id) is None:
            store.create_client(
                OAuthClient(
                    id=client_id,
                    secret_hash=hash_secret(client_secret),
                    name="Seed client",
                    user_id=admin_id,
                    scopes=os.environ.get("OAUTH_SEED_SCOPES", "read write"),
                    grant_types=os.environ.get("OAUTH_SEED_GRANT_TYPES", "client_credentials authorization_code"),
                    redirect_uri=os.environ.get("OAUTH_SEED_REDIRECT_URI") or None,
                )
            )
            logger.info("Seeded client: %s", client_id)
        else:
            logger.debug("Client already exists: %s", client_id)

    if store.db.query(Pizza).first() is None:
        store.db.add(
            Pizza(
                name="Margherita",
                description="Classic tomato, mozzarella and basil",
                ingredients=json.dumps(["Tomato Sauce", "Mozzarella", "Basil"]),
                price=10.99,
            )
        )
        store.db.commit()
        logger.info("Seeded default pizza")
