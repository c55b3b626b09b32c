"""Pure domain core: statuses, value derivation, authority, DTOs, clock."""
