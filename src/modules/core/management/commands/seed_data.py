from __future__ import annotations

import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand

from modules.catalog.exceptions import InsufficientStock, ItemUnavailable
from modules.catalog.models import Gem
from modules.core.identity import SELLER_GROUP, actor_from_user
from modules.orders.constants import PaymentMethod
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO, ShippingAddressDTO
from modules.orders.services import build_order_service
from modules.tax.constants import TaxCategory
from modules.tax.engine import split_for_item


class Command(BaseCommand):
    help = "Seed database with realistic development data."

    def add_arguments(self, parser):
        parser.add_argument("--orders", type=int, default=20)

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        sellers, buyers = self._seed_users()
        gems = self._seed_gems(sellers)
        orders_created = self._seed_orders(buyers, gems, options["orders"])

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"sellers={len(sellers)}, "
                f"buyers={len(buyers)}, "
                f"gems={len(gems)}, "
                f"orders={orders_created}"
            )
        )

    def _seed_users(self):
        User = get_user_model()
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser("admin", password="admin123")

        group, _ = Group.objects.get_or_create(name=SELLER_GROUP)
        sellers = []
        for username in ("jaipur_gems", "surat_stones"):
            user, created = User.objects.get_or_create(username=username)
            if created:
                user.set_password("seller123")
                user.save()
            user.groups.add(group)
            sellers.append(user)

        buyers = []
        for username in ("asha", "rahul", "meera"):
            user, created = User.objects.get_or_create(username=username)
            if created:
                user.set_password("buyer123")
                user.save()
            buyers.append(user)
        return sellers, buyers

    def _seed_gems(self, sellers) -> list[Gem]:
        self.stdout.write("Creating gems...")
        catalog = [
            ("Burmese Ruby 2ct", TaxCategory.CUT_POLISHED, Decimal("45000.00")),
            ("Kashmir Sapphire 1.5ct", TaxCategory.CUT_POLISHED, Decimal("82000.00")),
            ("Colombian Emerald 1ct", TaxCategory.CUT_POLISHED, Decimal("38500.00")),
            ("Round Brilliant Diamond 0.5ct", TaxCategory.CUT_DIAMONDS, Decimal("61000.00")),
            ("Rough Diamond Lot", TaxCategory.ROUGH_DIAMONDS, Decimal("120000.00")),
            ("Rough Garnet Parcel", TaxCategory.ROUGH_UNWORKED, Decimal("2500.00")),
            ("Yellow Sapphire 3ct", TaxCategory.CUT_POLISHED, Decimal("27000.00")),
            ("Blue Topaz 5ct", None, Decimal("4200.00")),
        ]
        gems: list[Gem] = []
        for index, (name, category, price) in enumerate(catalog):
            gem, _ = Gem.objects.get_or_create(
                name=name,
                defaults={
                    "seller": sellers[index % len(sellers)],
                    "price": price,
                    "gst_category": category,
                    "stock": random.randint(3, 15),
                },
            )
            gems.append(gem)
        Gem.objects.get_or_create(
            name="Padparadscha Sapphire (on request)",
            defaults={"seller": sellers[0], "contact_for_price": True, "stock": 1},
        )
        self.stdout.write(self.style.SUCCESS("Creating gems... Done!"))
        return gems

    def _seed_orders(self, buyers, gems: list[Gem], count: int) -> int:
        self.stdout.write("Creating orders...")
        service = build_order_service()
        created = 0
        for i in range(count):
            buyer = random.choice(buyers)
            picked = random.sample(gems, k=random.randint(1, 3))
            items = [CreateOrderItemDTO(gem_id=gem.id, quantity=1) for gem in picked]
            total = sum(
                (split_for_item(gem.price, 1, gem.gst_category).price_with_tax for gem in picked),
                Decimal("0.00"),
            )
            dto = CreateOrderDTO(
                items=items,
                shipping_address=ShippingAddressDTO(
                    name=buyer.username.title(),
                    phone="9876543210",
                    address_line1=f"{i + 1} MG Road",
                    city="Bengaluru",
                    state="Karnataka",
                    postal_code="560001",
                    country="India",
                ),
                payment_method=PaymentMethod.CASH_ON_DELIVERY,
                total_price=total,
            )
            try:
                service.create_order(dto, actor_from_user(buyer))
            except (ItemUnavailable, InsufficientStock) as exc:
                self.stdout.write(self.style.WARNING(f"Skipped order {i + 1}: {exc}"))
                continue
            created += 1

        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return created
