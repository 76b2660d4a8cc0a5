"""Built-in workflow definitions and their prompt templates."""

from __future__ import annotations

from agent_orchestrator.orchestrator.workflows import (
    ParameterSpec,
    TaskTemplate,
    WorkflowDefinition,
)

# -- full-stack development ---------------------------------------------------

BACKEND_ARCHITECTURE_PROMPT = """\
Design a scalable backend architecture for a {{project_type}} with the following
features: {{features}}.

Tech stack: {{tech_stack}}

Cover:
- RESTful API design
- Database schema outline
- Authentication strategy
- Error handling patterns
- Scalability considerations
"""

DATABASE_SCHEMA_PROMPT = """\
Based on the backend architecture, design an optimized database schema.

Cover normalization, index strategy, data integrity constraints and a
migration plan.
"""

FRONTEND_ARCHITECTURE_PROMPT = """\
Design a frontend architecture for a {{project_type}}.

Features needed: {{features}}

Cover component hierarchy, state management, routing, API integration
patterns and the responsive design approach.
"""

API_IMPLEMENTATION_PROMPT = """\
Implement the backend API based on the architecture and database schema.

Include input validation, error handling, authentication/authorization and
endpoint documentation.
"""

UI_IMPLEMENTATION_PROMPT = """\
Implement the frontend UI components based on the frontend architecture.

Components must be reusable, responsive and accessible (WCAG 2.1).
"""

INTEGRATION_TESTS_PROMPT = """\
Create integration tests for the full-stack application: API integration,
end-to-end user flows, error scenarios and test data generation.
"""

FULLSTACK_WORKFLOW = WorkflowDefinition(
    id="fullstack-dev",
    name="Full-Stack Development",
    description="Full-stack application development with frontend, backend and database",
    category="development",
    tags=("fullstack", "frontend", "backend", "database"),
    complexity="complex",
    estimated_duration_seconds=300,
    parameters=(
        ParameterSpec("project_type", "Kind of application to build", default="web app"),
        ParameterSpec("features", "Comma-separated feature list", required=True),
        ParameterSpec("tech_stack", "Preferred technologies", default="unspecified"),
    ),
    tasks=(
        TaskTemplate(
            id="backend-architecture",
            agent_id="backend-architect",
            description="Design backend architecture and API structure",
            prompt=BACKEND_ARCHITECTURE_PROMPT,
            priority=10,
            max_tokens=16_000,
        ),
        TaskTemplate(
            id="database-schema",
            agent_id="database-optimizer",
            description="Design optimized database schema",
            prompt=DATABASE_SCHEMA_PROMPT,
            dependencies=("backend-architecture",),
            priority=9,
            max_tokens=12_000,
        ),
        TaskTemplate(
            id="frontend-architecture",
            agent_id="frontend-developer",
            description="Design frontend architecture and component structure",
            prompt=FRONTEND_ARCHITECTURE_PROMPT,
            dependencies=("backend-architecture",),
            priority=9,
            max_tokens=16_000,
        ),
        TaskTemplate(
            id="api-implementation",
            agent_id="backend-architect",
            description="Implement backend API endpoints",
            prompt=API_IMPLEMENTATION_PROMPT,
            dependencies=("backend-architecture", "database-schema"),
            priority=8,
            max_tokens=20_000,
        ),
        TaskTemplate(
            id="ui-implementation",
            agent_id="frontend-developer",
            description="Implement frontend UI components",
            prompt=UI_IMPLEMENTATION_PROMPT,
            dependencies=("frontend-architecture",),
            priority=8,
            max_tokens=20_000,
        ),
        TaskTemplate(
            id="integration",
            agent_id="test-automator",
            description="Create integration tests for frontend-backend communication",
            prompt=INTEGRATION_TESTS_PROMPT,
            dependencies=("api-implementation", "ui-implementation"),
            priority=7,
            max_tokens=16_000,
        ),
    ),
)

# -- security audit -----------------------------------------------------------

SECURITY_OVERVIEW_PROMPT = """\
Perform a security assessment of the codebase at: {{codebase_path}}

Scope: {{scope}}

Cover threat modeling, attack surface analysis, OWASP Top 10 compliance and
risk prioritization.
"""

FRONTEND_SECURITY_PROMPT = """\
Audit frontend code for XSS, CSRF, Content Security Policy gaps, input
sanitization and insecure client-side storage.
"""

BACKEND_SECURITY_PROMPT = """\
Audit backend code for SQL injection, broken authentication/authorization,
weak password hashing, missing rate limiting and secrets handling.
"""

DEPENDENCY_SECURITY_PROMPT = """\
Audit third-party dependencies in {{codebase_path}} for known CVEs, license
issues and outdated packages. Recommend remediations.
"""

SECURITY_REPORT_PROMPT = """\
Compile a security audit report from all findings: executive summary,
findings by category, risk matrix and remediation priorities.
"""

SECURITY_AUDIT_WORKFLOW = WorkflowDefinition(
    id="security-audit",
    name="Security Audit",
    description="Security audit with OWASP Top 10 checks and dependency scanning",
    category="security",
    tags=("security", "audit", "owasp", "vulnerability"),
    complexity="complex",
    estimated_duration_seconds=240,
    parameters=(
        ParameterSpec("codebase_path", "Path of the code under audit", default="."),
        ParameterSpec("scope", "Audit scope", default="full"),
    ),
    tasks=(
        TaskTemplate(
            id="security-overview",
            agent_id="security-auditor",
            description="Initial security assessment and threat modeling",
            prompt=SECURITY_OVERVIEW_PROMPT,
            priority=10,
            max_tokens=16_000,
        ),
        TaskTemplate(
            id="frontend-security",
            agent_id="frontend-security-coder",
            description="Audit frontend security (XSS, CSRF, CSP)",
            prompt=FRONTEND_SECURITY_PROMPT,
            dependencies=("security-overview",),
            priority=9,
            max_tokens=12_000,
        ),
        TaskTemplate(
            id="backend-security",
            agent_id="backend-security-coder",
            description="Audit backend security (injection, auth, encryption)",
            prompt=BACKEND_SECURITY_PROMPT,
            dependencies=("security-overview",),
            priority=9,
            max_tokens=12_000,
        ),
        TaskTemplate(
            id="dependency-security",
            agent_id="security-auditor",
            description="Audit third-party dependencies for vulnerabilities",
            prompt=DEPENDENCY_SECURITY_PROMPT,
            dependencies=("security-overview",),
            priority=8,
            max_tokens=10_000,
        ),
        TaskTemplate(
            id="security-report",
            agent_id="security-auditor",
            description="Compile security audit report",
            prompt=SECURITY_REPORT_PROMPT,
            dependencies=("frontend-security", "backend-security", "dependency-security"),
            priority=7,
            max_tokens=16_000,
        ),
    ),
)

# -- testing suite ------------------------------------------------------------

TEST_STRATEGY_PROMPT = """\
Define a test strategy for the application.

Scope: {{test_scope}}
Framework: {{framework}}
Target coverage: {{coverage}}%

Cover the test pyramid, test data strategy and CI integration.
"""

BACKEND_UNIT_TESTS_PROMPT = """\
Write unit tests with {{framework}} for the backend code: business logic,
edge cases, fixtures and mocking where collaborators are external.
"""

FRONTEND_UNIT_TESTS_PROMPT = """\
Write unit tests with {{framework}} for frontend components, hooks and
utilities, including accessibility checks.
"""

INTEGRATION_SUITE_PROMPT = """\
Write integration tests with {{framework}} for API and database interactions,
authentication flows and error handling.
"""

TEST_REPORT_PROMPT = """\
Summarize coverage against the {{coverage}}% target, list missing tests and
recommend improvements.
"""

TESTING_WORKFLOW = WorkflowDefinition(
    id="testing-suite",
    name="Comprehensive Testing",
    description="Testing suite with unit and integration tests and a coverage report",
    category="testing",
    tags=("testing", "tdd", "unit", "integration"),
    complexity="moderate",
    estimated_duration_seconds=180,
    parameters=(
        ParameterSpec("test_scope", "What to cover", default="full"),
        ParameterSpec("framework", "Test framework", default="pytest"),
        ParameterSpec("coverage", "Target coverage percent", default=80),
    ),
    tasks=(
        TaskTemplate(
            id="test-strategy",
            agent_id="test-automator",
            description="Define test strategy",
            prompt=TEST_STRATEGY_PROMPT,
            priority=10,
            max_tokens=12_000,
        ),
        TaskTemplate(
            id="unit-tests-backend",
            agent_id="test-automator",
            description="Create backend unit tests",
            prompt=BACKEND_UNIT_TESTS_PROMPT,
            dependencies=("test-strategy",),
            priority=9,
            max_tokens=16_000,
        ),
        TaskTemplate(
            id="unit-tests-frontend",
            agent_id="test-automator",
            description="Create frontend unit tests",
            prompt=FRONTEND_UNIT_TESTS_PROMPT,
            dependencies=("test-strategy",),
            priority=9,
            max_tokens=16_000,
        ),
        TaskTemplate(
            id="integration-tests",
            agent_id="test-automator",
            description="Create integration tests",
            prompt=INTEGRATION_SUITE_PROMPT,
            dependencies=("test-strategy", "unit-tests-backend"),
            priority=8,
            max_tokens=16_000,
        ),
        TaskTemplate(
            id="test-report",
            agent_id="test-automator",
            description="Generate test coverage report",
            prompt=TEST_REPORT_PROMPT,
            dependencies=("unit-tests-backend", "unit-tests-frontend", "integration-tests"),
            priority=7,
            max_tokens=12_000,
        ),
    ),
)

# -- code review --------------------------------------------------------------

QUALITY_REVIEW_PROMPT = """\
Review code quality for: {{pr_url}}

Changed files: {{changed_files}}
Review depth: {{review_depth}}

Cover readability, structure, naming, error handling and duplication.
"""

SECURITY_REVIEW_PROMPT = """\
Review the security implications of the changes: input validation,
authentication, secrets and injection risks.
"""

PERFORMANCE_REVIEW_PROMPT = """\
Review the performance impact of the changes: algorithmic complexity,
queries, memory use and caching.
"""

TEST_REVIEW_PROMPT = """\
Review test coverage of the changes and list missing cases.
"""

REVIEW_SUMMARY_PROMPT = """\
Compile the review findings into a summary with a merge recommendation and
prioritized action items.
"""

CODE_REVIEW_WORKFLOW = WorkflowDefinition(
    id="code-review",
    name="Code Review",
    description="Code review covering quality, security, performance and tests",
    category="quality",
    tags=("code-review", "quality", "best-practices"),
    complexity="moderate",
    estimated_duration_seconds=150,
    parameters=(
        ParameterSpec("pr_url", "Pull request URL", default="(not provided)"),
        ParameterSpec("changed_files", "Comma-separated changed files", default="(all)"),
        ParameterSpec("review_depth", "quick or thorough", default="thorough"),
    ),
    tasks=(
        TaskTemplate(
            id="quality-review",
            agent_id="code-reviewer",
            description="Review code quality and best practices",
            prompt=QUALITY_REVIEW_PROMPT,
            priority=10,
            max_tokens=16_000,
        ),
        TaskTemplate(
            id="security-review",
            agent_id="security-auditor",
            description="Review security implications",
            prompt=SECURITY_REVIEW_PROMPT,
            dependencies=("quality-review",),
            priority=9,
            max_tokens=12_000,
        ),
        TaskTemplate(
            id="performance-review",
            agent_id="performance-engineer",
            description="Review performance impact",
            prompt=PERFORMANCE_REVIEW_PROMPT,
            dependencies=("quality-review",),
            priority=9,
            max_tokens=12_000,
        ),
        TaskTemplate(
            id="test-review",
            agent_id="test-automator",
            description="Review test coverage",
            prompt=TEST_REVIEW_PROMPT,
            dependencies=("quality-review",),
            priority=8,
            max_tokens=12_000,
        ),
        TaskTemplate(
            id="review-summary",
            agent_id="code-reviewer",
            description="Compile review summary",
            prompt=REVIEW_SUMMARY_PROMPT,
            dependencies=("security-review", "performance-review", "test-review"),
            priority=6,
            max_tokens=12_000,
        ),
    ),
)

BUILTIN_WORKFLOWS: tuple[WorkflowDefinition, ...] = (
    FULLSTACK_WORKFLOW,
    SECURITY_AUDIT_WORKFLOW,
    TESTING_WORKFLOW,
    CODE_REVIEW_WORKFLOW,
)
