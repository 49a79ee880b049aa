"""Core Business Logic Module

Entities, services and representation assembly, independent of Flask.

Architecture:
    - Pure Python (no Flask dependencies in core logic)
    - Testable without HTTP mocking
    - Services take their collaborators as constructor arguments

Module Structure:
    - models.py          : Entities (User, Role, Right, ApiToken) and UserDetails
    - repository.py      : In-memory repository, identity strategies, paging
    - services.py        : EntityService, AssemblingEntityService and the
                           concrete User/Role/Right/ApiToken services
    - representations.py : Outbound representation types
    - assemblers.py      : Entity → representation assemblers
    - access.py          : Field visibility metadata and AccessAwareFilter
    - tokens.py          : JWT issuing and verification
    - authentication.py  : Local and OAuth2 login, bearer resolution
    - audit.py           : Signed JSON-lines audit trail
    - dto.py / validators.py : Payload parsing and validation
    - registry.py        : Wiring of repositories and services
    - initialization.py  : Startup rights, roles and admin user

Public APIs:
    Services (backend.core.services):
        - AssemblingEntityService.get() / list() / get_assembler()
        - UserService.load_user_by_username()
        - ApiTokenService.list_for() / for_token()

    Assembly (backend.core.assemblers):
        - RepresentationAssembler.to_model()

    Filtering (backend.core.access):
        - AccessAwareFilter(principal).serialize()
"""
