"""Pure domain value objects: calendar, validation, scope, rules, DTOs, clock."""
