"""
casedesk Directories

Person and login-identity lookups. Both are owned by the wider portal;
these in-memory versions implement the lookups the core consumes.
"""

from typing import Dict, List, Optional
from uuid import UUID

from ..models.case import Person, User


class PersonDirectory:

    def __init__(self, people: Optional[List[Person]] = None):
        self._people: Dict[UUID, Person] = {}
        for person in people or []:
            self._people[person.id] = person

    async def add(self, person: Person) -> Person:
        self._people[person.id] = person
        return person

    async def find_person_by_id(self, person_id: UUID) -> Optional[Person]:
        return self._people.get(person_id)

    async def find_person_by_linked_user(self, user_id: UUID) -> Optional[Person]:
        for person in self._people.values():
            if person.user_id == user_id:
                return person
        return None


class UserDirectory:

    def __init__(self, users: Optional[List[User]] = None):
        self._users: Dict[UUID, User] = {}
        for user in users or []:
            self._users[user.id] = user

    async def list_elevated_users(self) -> List[User]:
        """Admin-tier recipients of case notifications."""
        return [u for u in self._users.values() if u.is_elevated]
