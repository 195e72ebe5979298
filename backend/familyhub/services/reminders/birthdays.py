"""Birthday reminders for family members and contacts, on the day and a few days ahead."""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select

from familyhub.models.household import Contact, FamilyMember
from familyhub.services.reminder_scheduler import DueNotification, ReminderCategory, RunContext
from familyhub.utils.timezone import to_local

UPCOMING_DAYS = 3


@dataclass(frozen=True)
class Person:
    id: str
    kind: str
    owner_id: str
    name: str
    birthday: date


def birthday_in(birthday: date, year: int) -> date:
    """The date the birthday is celebrated in ``year``; Feb 29 falls back to Feb 28."""
    if birthday.month == 2 and birthday.day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return birthday.replace(year=year)


def birthday_message(name: str, upcoming: bool) -> tuple[str, str]:
    if upcoming:
        return f"🎂 {name}'s birthday in {UPCOMING_DAYS} days!", "Time to plan something special?"
    return f"🎂 {name}'s birthday is today!", "Don't forget to wish them a happy birthday!"


async def _people(ctx: RunContext) -> list[Person]:
    members = await ctx.session.execute(select(FamilyMember).where(FamilyMember.birthday.is_not(None)))
    contacts = await ctx.session.execute(select(Contact).where(Contact.birthday.is_not(None)))
    people = [Person(str(m.id), "family", m.user_id, m.name, m.birthday) for m in members.scalars().all()]
    people += [
        Person(str(c.id), "contact", c.user_id, c.display_name or c.name, c.birthday)
        for c in contacts.scalars().all()
    ]
    return people


def _age(person: Person, on: date) -> Optional[int]:
    # Contacts are often stored with a placeholder year
    if person.birthday.year <= 1900:
        return None
    return on.year - person.birthday.year


class BirthdayReminders(ReminderCategory):
    name = "birthdays"
    ledger_category = "birthday"
    category_flag = "family_enabled"
    noun = "birthday reminders"

    async def collect(self, ctx: RunContext) -> list[DueNotification]:
        today = to_local(ctx.now()).date()
        targets = [(today, False), (today + timedelta(days=UPCOMING_DAYS), True)]

        due = []
        for person in await _people(ctx):
            for day, upcoming in targets:
                if birthday_in(person.birthday, day.year) != day:
                    continue
                title, body = birthday_message(person.name, upcoming)
                notification_type = "birthday_upcoming" if upcoming else "birthday_today"
                due.append(
                    DueNotification(
                        reference_id=f"{person.kind}:{person.id}",
                        notification_type=notification_type,
                        title=title,
                        body=body,
                        recipients=[person.owner_id],
                        scope=f"{notification_type}:{day.isoformat()}",
                        flags=("birthday_reminder",),
                        data={
                            "person_id": person.id,
                            "person_type": person.kind,
                            "birthday": day.isoformat(),
                            "age": _age(person, day),
                            "deep_link": "/contacts",
                        },
                    )
                )
        return due
