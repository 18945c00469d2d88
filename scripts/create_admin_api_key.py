"""Create an admin API key and print the raw token once."""
from query_sandbox.db import get_sessionmaker, init_engine
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.utils.apikey import gen_key
from query_sandbox.utils.audit import log_audit


def main() -> None:
    init_engine()
    db = get_sessionmaker()()

    raw_token, prefix, key_hash = gen_key()

    try:
        api_key = ApiKey(
            name=f"admin-{prefix}",
            prefix=prefix,
            key_hash=key_hash,
            scope=ApiScope.admin,
            is_active=True,
        )
        db.add(api_key)
        db.flush()
        log_audit(
            db,
            actor="cli",
            action="CREATE_API_KEY",
            entity="ApiKey",
            entity_id=api_key.id,
            data={"name": api_key.name, "scope": api_key.scope.value},
        )
        db.commit()
        db.refresh(api_key)

        print("==========================================")
        print("Admin API key created")
        print("Use this key in your Authorization header:")
        print(f"    Authorization: Bearer {raw_token}")
        print(f"(DB id: {api_key.id}, scope: {api_key.scope.value})")
        print("==========================================")
    finally:
        db.close()


if __name__ == "__main__":
    main()
