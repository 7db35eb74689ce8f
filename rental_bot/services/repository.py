"""
Rental Repository - все доменные запросы к хранилищу.

DRY Principle: Единственное место для SQL.
Methods are synchronous and raise StoreError; handlers run them through
RetryPolicy so they execute off the event loop with retries.
"""

import logging
from datetime import date
from typing import Optional, List

from ..db_service import Store, STATUS_AVAILABLE, STATUS_BOOKED, STATUS_FORCED_UNAVAILABLE
from ..exceptions import RentalConflictError
from ..schemas import BranchSchema, CarSchema, CarStatusSchema, RentalSchema, RentalDetailsSchema

logger = logging.getLogger("repository")

_BRANCH_COLUMNS = "b.id, b.city, b.street, b.building_number"

_RENTAL_DETAILS_COLUMNS = (
    'RentalID AS rental_id, "Car Name" AS car_name, Login AS login, '
    '"Start Date" AS start_date, "End Date" AS end_date, '
    '"Start Branch" AS start_branch_addr, "End Branch" AS end_branch_addr'
)

_CAR_FULL_QUERY = """
    SELECT c.id, c.name, c.release_year, c.branch_id,
           b.city AS branch_city, b.street AS branch_street, b.building_number AS branch_building,
           c.status_id, cs.status_name, t.type_name
    FROM Cars c
    LEFT JOIN Branch b ON b.id = c.branch_id
    LEFT JOIN CarStatus cs ON cs.id = c.status_id
    LEFT JOIN CarType t ON t.id = c.type_id
"""


class RentalRepository:
    """Users, branches, cars and rentals."""

    def __init__(self, store: Store):
        self.store = store

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def is_user(self, login: str) -> bool:
        return self.store.fetch_one("SELECT 1 FROM Users WHERE login = ? LIMIT 1", (login,)) is not None

    def verify_password(self, login: str, password: str) -> bool:
        # TODO: switch to salted hashes together with a migration of existing Users.password values
        row = self.store.fetch_one("SELECT password FROM Users WHERE login = ?", (login,))
        return row is not None and row["password"] is not None and row["password"] == password

    def is_email_used(self, email: str) -> bool:
        return self.store.fetch_one("SELECT 1 FROM Users WHERE email = ? LIMIT 1", (email,)) is not None

    def is_phone_used(self, phone: str) -> bool:
        return self.store.fetch_one("SELECT 1 FROM Users WHERE phone_number = ? LIMIT 1", (phone,)) is not None

    def is_license_used(self, license_id: str) -> bool:
        return self.store.fetch_one("SELECT 1 FROM Users WHERE license_id = ? LIMIT 1", (license_id,)) is not None

    def create_user(self, login: str, password: str, email: str, phone: str, license_id: str) -> int:
        """Insert a new user, return its id"""
        with self.store.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO Users (login, phone_number, license_id, email, password) VALUES (?, ?, ?, ?, ?)",
                (login, phone, license_id, email, password),
            )
            user_id = cursor.lastrowid
        logger.info(f"✅ User {login} created (id={user_id})")
        return user_id

    def get_user_id(self, login: str) -> Optional[int]:
        row = self.store.fetch_one("SELECT id FROM Users WHERE login = ? LIMIT 1", (login,))
        return row["id"] if row else None

    def is_admin(self, login: str) -> bool:
        row = self.store.fetch_one("SELECT isAdmin FROM Users WHERE login = ? LIMIT 1", (login,))
        return bool(row and row["isAdmin"])

    def set_admin_status(self, login: str, is_admin: bool) -> bool:
        """Returns True if a row was updated"""
        updated = self.store.execute(
            "UPDATE Users SET isAdmin = ? WHERE login = ?", (1 if is_admin else 0, login)
        )
        return updated > 0

    # ------------------------------------------------------------------
    # Branches and cars
    # ------------------------------------------------------------------

    def list_branches_with_available_cars(self) -> List[BranchSchema]:
        rows = self.store.fetch_all(
            f"""
            SELECT {_BRANCH_COLUMNS}
            FROM Branch b
            INNER JOIN Cars c ON c.branch_id = b.id
            WHERE c.status_id = ?
            GROUP BY b.id, b.city, b.street, b.building_number
            ORDER BY b.id
            """,
            (STATUS_AVAILABLE,),
        )
        return [BranchSchema(**row) for row in rows]

    def list_all_branches(self) -> List[BranchSchema]:
        rows = self.store.fetch_all(f"SELECT {_BRANCH_COLUMNS} FROM Branch b ORDER BY b.id")
        return [BranchSchema(**row) for row in rows]

    def list_available_cars_in_branch(self, branch_id: int) -> List[CarSchema]:
        rows = self.store.fetch_all(
            """
            SELECT c.id, c.name, c.release_year, t.type_name, c.branch_id, c.status_id
            FROM Cars c
            INNER JOIN CarType t ON t.id = c.type_id
            WHERE c.branch_id = ? AND c.status_id = ?
            ORDER BY c.id
            """,
            (branch_id, STATUS_AVAILABLE),
        )
        return [CarSchema(**row) for row in rows]

    def get_car(self, car_id: int) -> Optional[CarSchema]:
        row = self.store.fetch_one(f"{_CAR_FULL_QUERY} WHERE c.id = ? LIMIT 1", (car_id,))
        return CarSchema(**row) if row else None

    def get_branch(self, branch_id: int) -> Optional[BranchSchema]:
        row = self.store.fetch_one(
            f"SELECT {_BRANCH_COLUMNS} FROM Branch b WHERE b.id = ? LIMIT 1", (branch_id,)
        )
        return BranchSchema(**row) if row else None

    # ------------------------------------------------------------------
    # Rentals
    # ------------------------------------------------------------------

    def create_rental(self, car_id: int, user_id: int, start_branch_id: int, end_branch_id: int,
                      start_date: date, end_date: date) -> bool:
        """
        Insert the rental and book the car in one transaction.

        The car is flipped only from available to booked; if that touches no
        row (car gone or taken meanwhile) the insert is rolled back as well.
        """
        try:
            with self.store.transaction() as conn:
                inserted = conn.execute(
                    "INSERT INTO Rentals (car_id, user_id, start_branch_id, end_branch_id, start_date, end_date) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (car_id, user_id, start_branch_id, end_branch_id,
                     start_date.isoformat(), end_date.isoformat()),
                ).rowcount
                if inserted <= 0:
                    raise RentalConflictError("rental insert affected no rows", context={"car_id": car_id})

                updated = conn.execute(
                    "UPDATE Cars SET status_id = ? WHERE id = ? AND status_id = ?",
                    (STATUS_BOOKED, car_id, STATUS_AVAILABLE),
                ).rowcount
                if updated <= 0:
                    raise RentalConflictError("car is not available", context={"car_id": car_id})
        except RentalConflictError as e:
            logger.warning(f"⚠️ Rental for car {car_id} rolled back: {e.message}")
            return False

        logger.info(f"✅ Car {car_id} booked for user {user_id}")
        return True

    def delete_rental(self, rental_id: int) -> bool:
        """
        Delete the rental and release its car in one transaction.

        The car status is read under the transaction lock; a car forced to the
        unavailable status stays that way, anything else goes back to available.
        """
        try:
            with self.store.transaction() as conn:
                row = conn.execute("SELECT car_id FROM Rentals WHERE id = ? LIMIT 1", (rental_id,)).fetchone()
                if row is None:
                    raise RentalConflictError("rental not found", context={"rental_id": rental_id})
                car_id = row["car_id"]

                # BEGIN IMMEDIATE already holds the write lock, equivalent to SELECT ... FOR UPDATE
                status_row = conn.execute("SELECT status_id FROM Cars WHERE id = ?", (car_id,)).fetchone()
                current_status = status_row["status_id"] if status_row else None

                deleted = conn.execute("DELETE FROM Rentals WHERE id = ?", (rental_id,)).rowcount
                if deleted <= 0:
                    raise RentalConflictError("rental delete affected no rows", context={"rental_id": rental_id})

                if current_status != STATUS_FORCED_UNAVAILABLE:
                    restored = conn.execute(
                        "UPDATE Cars SET status_id = ? WHERE id = ?", (STATUS_AVAILABLE, car_id)
                    ).rowcount
                    if restored <= 0:
                        raise RentalConflictError("car row missing", context={"car_id": car_id})
        except RentalConflictError as e:
            logger.warning(f"⚠️ Rental {rental_id} deletion rolled back: {e.message}")
            return False

        logger.info(f"✅ Rental {rental_id} deleted (car status was {current_status})")
        return True

    def update_rental_start_date(self, rental_id: int, new_start_date: date) -> bool:
        updated = self.store.execute(
            "UPDATE Rentals SET start_date = ? WHERE id = ?", (new_start_date.isoformat(), rental_id)
        )
        return updated > 0

    def update_rental_return_branch_and_date(self, rental_id: int, new_end_branch_id: int,
                                             new_end_date: date) -> bool:
        updated = self.store.execute(
            "UPDATE Rentals SET end_branch_id = ?, end_date = ? WHERE id = ?",
            (new_end_branch_id, new_end_date.isoformat(), rental_id),
        )
        return updated > 0

    def list_rentals_by_login(self, login: str) -> List[RentalDetailsSchema]:
        rows = self.store.fetch_all(
            f"SELECT {_RENTAL_DETAILS_COLUMNS} FROM RentalDetails WHERE Login = ? ORDER BY RentalID",
            (login,),
        )
        return [RentalDetailsSchema(**row) for row in rows]

    def get_rental(self, rental_id: int) -> Optional[RentalSchema]:
        row = self.store.fetch_one(
            """
            SELECT r.id AS rental_id, r.car_id, r.user_id, c.name AS car_name, r.start_date, r.end_date,
                   b1.id AS start_branch_id,
                   b1.city || ', ' || b1.street || ', ' || b1.building_number AS start_branch_addr,
                   b2.id AS end_branch_id,
                   b2.city || ', ' || b2.street || ', ' || b2.building_number AS end_branch_addr
            FROM Rentals r
            INNER JOIN Cars c ON r.car_id = c.id
            INNER JOIN Branch b1 ON r.start_branch_id = b1.id
            INNER JOIN Branch b2 ON r.end_branch_id = b2.id
            WHERE r.id = ? LIMIT 1
            """,
            (rental_id,),
        )
        return RentalSchema(**row) if row else None

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def list_all_cars(self) -> List[CarSchema]:
        rows = self.store.fetch_all(f"{_CAR_FULL_QUERY} ORDER BY c.id")
        return [CarSchema(**row) for row in rows]

    def list_cars_page(self, offset: int, limit: int) -> List[CarSchema]:
        rows = self.store.fetch_all(f"{_CAR_FULL_QUERY} ORDER BY c.id LIMIT ? OFFSET ?", (limit, offset))
        return [CarSchema(**row) for row in rows]

    def count_cars(self) -> int:
        return self.store.fetch_one("SELECT COUNT(*) AS n FROM Cars")["n"]

    def list_all_rentals(self) -> List[RentalDetailsSchema]:
        rows = self.store.fetch_all(f"SELECT {_RENTAL_DETAILS_COLUMNS} FROM RentalDetails ORDER BY RentalID")
        return [RentalDetailsSchema(**row) for row in rows]

    def list_rentals_page(self, offset: int, limit: int) -> List[RentalDetailsSchema]:
        rows = self.store.fetch_all(
            f"SELECT {_RENTAL_DETAILS_COLUMNS} FROM RentalDetails ORDER BY RentalID LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [RentalDetailsSchema(**row) for row in rows]

    def count_rentals(self) -> int:
        return self.store.fetch_one("SELECT COUNT(*) AS n FROM RentalDetails")["n"]

    def list_car_statuses(self) -> List[CarStatusSchema]:
        rows = self.store.fetch_all("SELECT id, status_name FROM CarStatus ORDER BY id")
        return [CarStatusSchema(**row) for row in rows]

    def delete_car(self, car_id: int) -> bool:
        """Delete a car unless rentals still reference it"""
        with self.store.transaction() as conn:
            in_use = conn.execute("SELECT 1 FROM Rentals WHERE car_id = ? LIMIT 1", (car_id,)).fetchone()
            if in_use is not None:
                logger.warning(f"⚠️ Car {car_id} has rentals, not deleted")
                return False
            deleted = conn.execute("DELETE FROM Cars WHERE id = ?", (car_id,)).rowcount
        return deleted > 0

    def move_car(self, car_id: int, branch_id: int) -> bool:
        updated = self.store.execute("UPDATE Cars SET branch_id = ? WHERE id = ?", (branch_id, car_id))
        return updated > 0

    def update_car_status(self, car_id: int, status_id: int) -> bool:
        updated = self.store.execute("UPDATE Cars SET status_id = ? WHERE id = ?", (status_id, car_id))
        return updated > 0
