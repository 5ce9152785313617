from warranty_pro.main import app


def main():
    prefixes = ("/notifications", "/api/notifications", "/claims", "/api/claims", "/cron", "/health")
    for route in app.routes:
        path = getattr(route, "path", "")
        methods = getattr(route, "methods", [])
        if any(path.startswith(p) for p in prefixes):
            print(f"{sorted(methods)} {path}")


if __name__ == "__main__":
    main()
