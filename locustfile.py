from locust import HttpUser, task, between
import random

class ShopUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Sign up a fresh account for this simulated client; the cookie keeps it logged in
        uname = f"user_{random.randint(1, 1_000_000)}"
        self.client.post(
            "/signup",
            data={"username": uname, "email": f"{uname}@example.com", "password": "secret1", "confirm_password": "secret1"},
        )

    @task(3)
    def browse(self):
        term = random.choice(["", "a", "product"])
        self.client.get("/api/products", params={"searchTerm": term, "page": 1, "pageSize": 10})

    @task(2)
    def add_to_cart(self):
        page = self.client.get("/api/products", params={"pageSize": 20}).json()
        items = page.get("items") or []
        if not items:
            return
        product = random.choice(items)
        self.client.post("/addToCart", data={"productId": product["id"], "quantity": 1})

    @task(1)
    def view_cart(self):
        self.client.get("/api/cart")
