"""FinSight Assistant - Main Application"""

from app import create_app
from database import init_db

app = create_app()


if __name__ == "__main__":
    with app.app_context():
        init_db()

    print("\n=== FinSight Assistant Backend ===")
    print("Registered Routes:")
    for rule in app.url_map.iter_rules():
        methods = ", ".join(sorted(rule.methods - {"HEAD", "OPTIONS"}))
        print(f"  {rule.endpoint:35s} {methods:20s} {rule.rule}")
    print("==================================\n")

    app.run(host="0.0.0.0", port=8000, debug=False)
