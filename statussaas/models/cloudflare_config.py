"""Cloudflare configuration model.

One row per user holding the credentials used to deploy that user's
pages to Workers/KV. The API token is a deferred column: ordinary queries
never load it, only load_credentials() asks for it explicitly.
"""

import uuid

from statussaas.extensions import db


class CloudflareConfig(db.Model):
    __tablename__ = "cloudflare_configs"

    DEFAULT_WORKER_NAME = "maintenance-worker"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), unique=True, nullable=False
    )
    api_token = db.deferred(db.Column(db.String(255), nullable=False))
    email = db.Column(db.String(255), nullable=False)
    account_id = db.Column(db.String(64), nullable=False)
    zone_id = db.Column(db.String(64), nullable=False)
    kv_namespace_id = db.Column(db.String(64), nullable=False)
    worker_name = db.Column(
        db.String(100), nullable=False, default=DEFAULT_WORKER_NAME
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", back_populates="cloudflare_config")

    def __repr__(self):
        return f"<CloudflareConfig user={self.user_id} worker={self.worker_name}>"
