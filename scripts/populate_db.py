import os
import sys
import random

import django
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'donation_exchange.settings')
django.setup()

from core.exceptions import DonationError
from core.models import Donation, User
from core.services import lifecycle

fake = Faker('pt_BR')

DONATION_TITLES = {
    'FOOD': ["Cesta basica", "Arroz e feijao", "Enlatados variados"],
    'APPLIANCES': ["Geladeira usada", "Micro-ondas", "Liquidificador"],
    'FURNITURE': ["Sofa de tres lugares", "Mesa de jantar", "Guarda-roupa"],
    'CLOTHING': ["Roupas de inverno", "Sapatos infantis", "Casacos"],
    'ELECTRONICS': ["Notebook antigo", "Televisao 32 polegadas", "Monitor"],
    'EQUIPMENT': ["Cadeira de rodas", "Furadeira", "Bicicleta"],
    'HOME': ["Jogo de panelas", "Roupa de cama", "Cortinas"],
}


def create_users(num_users=20):
    print(f"Creating {num_users} users...")
    users = []

    for _ in range(num_users):
        email = fake.unique.email()
        username = email.split('@')[0]
        user = User.objects.create_user(
            username=username,
            email=email,
            password='password123',
            name=fake.name(),
            phone_number=fake.msisdn()[:15],
            postal_code=fake.postcode(),
            street=fake.street_name(),
            house_number=fake.building_number(),
            neighborhood=fake.bairro(),
            city=fake.city(),
            state=fake.estado_sigla(),
            biography=fake.sentence(nb_words=12),
        )
        users.append(user)

    print(f"Created {len(users)} users.")
    return users


def create_donations(users):
    print("Creating donations...")
    donations = []

    for user in users:
        # Each user donates 0-3 items
        for _ in range(random.randint(0, 3)):
            category = random.choice(list(DONATION_TITLES))
            donation = lifecycle.create_donation(user.id, {
                'title': random.choice(DONATION_TITLES[category]),
                'description': fake.paragraph(nb_sentences=3)[:1000],
                'category': category,
                'pickup_type': random.choice([
                    Donation.PICKUP_AT_LOCATION,
                    Donation.PICKUP_ARRANGE_WITH_DONOR,
                ]),
                'postal_code': fake.postcode(),
                'street': fake.street_name(),
                'location_number': fake.building_number(),
                'neighborhood': fake.bairro(),
                'city': user.city or fake.city(),
                'state': user.state or fake.estado_sigla(),
            })
            donations.append(donation)

    print(f"Created {len(donations)} donations.")
    return donations


def create_candidacies(users, donations):
    print("Creating candidacies...")
    count = 0

    for donation in donations:
        others = [u for u in users if u.id != donation.donor_id]
        for applicant in random.sample(others, min(len(others), random.randint(0, 4))):
            lifecycle.apply_for_donation(donation.pk, applicant.id)
            count += 1

    print(f"Created {count} candidacies.")


def advance_donations(donations):
    """Move some donations through the lifecycle so every status is represented."""
    print("Advancing donations...")
    advanced = 0

    for donation in donations:
        candidates = list(lifecycle.list_candidates(donation.pk, donation.donor_id))
        if not candidates or random.random() < 0.4:
            continue

        receiver_id = candidates[0].applicant_id
        donor_id = donation.donor_id
        try:
            lifecycle.choose_receiver(donation.pk, donor_id, receiver_id)
            advanced += 1

            if random.random() < 0.6:
                lifecycle.update_progress(donation.pk, donor_id, {'pickup_confirmed_by_donor': True})
                lifecycle.update_progress(donation.pk, receiver_id, {'pickup_confirmed_by_receiver': True})

                if random.random() < 0.5:
                    lifecycle.update_progress(donation.pk, donor_id, {'completion_confirmed_by_donor': True})
                    lifecycle.update_progress(donation.pk, receiver_id, {'completion_confirmed_by_receiver': True})
        except DonationError as exc:
            print(f"Skipping donation {donation.sequential_id}: {exc.message}")

    print(f"Advanced {advanced} donations.")


def main():
    print("Starting database population...")

    users = create_users(num_users=20)

    donations = create_donations(users)

    create_candidacies(users, donations)

    advance_donations(donations)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
