from db import connect
from services.schema import ensure_schema


def init_db():
    engine = connect(ensure=False)
    try:
        ensure_schema(engine)
    finally:
        engine.dispose()


if __name__ == "__main__":
    init_db()
