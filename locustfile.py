from locust import HttpUser, task, between
import random

CATEGORIES = ["Food", "Rent", "Travel", "Fuel", "Movies"]


class ApiUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Create and log in a user for this simulated client
        email = f"user_{random.randint(1, 1_000_000)}@example.com"
        self.headers = None
        r = self.client.post("/user/signup", json={"name": email.split("@")[0], "email": email, "password": "secret1"})
        if r.status_code != 201:
            return
        r = self.client.post("/user/login", json={"email": email, "password": "secret1"})
        if r.status_code == 200:
            self.headers = {"Authorization": f"Bearer {r.json()['token']}"}

    @task(3)
    def add_expense(self):
        if not self.headers:
            return
        body = {
            "amount": random.randint(1, 500),
            "category": random.choice(CATEGORIES),
            "date": f"2024-{random.randint(1, 12):02d}-{random.randint(1, 28):02d}",
        }
        self.client.post("/expense/addexpense", json=body, headers=self.headers)

    @task(1)
    def list_expenses(self):
        if not self.headers:
            return
        self.client.get("/expense/getexpenses", headers=self.headers)

    @task(1)
    def breakdown(self):
        if not self.headers:
            return
        self.client.get("/expense/breakdown", headers=self.headers)
