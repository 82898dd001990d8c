from enum import Enum


class Criticality(str, Enum):
    LOW = "BAIXA"
    MEDIUM = "MEDIA"
    HIGH = "ALTA"


class AnswerChoice(str, Enum):
    UNSET = ""
    YES = "Sim"
    NO = "Não"


class ControlTestStatus(str, Enum):
    NOT_SET = ""
    YES = "SIM"
    NO = "NAO"
    NO_WITH_ACTION_PLAN = "NAO_PLANO"


class AttachmentCategory(str, Enum):
    RULE = "NORMA"
    TEMPLATE = "TEMPLATE"
    ANSWER = "RESPOSTA"
    DEFICIENCY = "DEFICIENCIA"
    TEST_REQUEST = "TESTE_REQUISICAO"
    TEST_RESPONSE = "TESTE_RESPOSTA"
    TEST_SAMPLE = "TESTE_AMOSTRA"
    TEST_EVIDENCE = "TESTE_EVIDENCIAS"


class EntityState(str, Enum):
    """Where a section/question stands relative to the backend."""
    LOCAL_ONLY = "LOCAL_ONLY"
    SYNCING = "SYNCING"
    PERSISTED = "PERSISTED"
    PENDING_DELETE = "PENDING_DELETE"
    DELETED = "DELETED"


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    LOADING = "loading"
    INFO = "info"


# Section category labels offered by the builder.
SECTION_ITEMS = (
    "Política (PI)",
    "Avaliação Interna de Risco (AIR)",
    "Avaliação de Novos Produtos, Serviços e Tecnologia (ANPST)",
    "Governança (GOV)",
    "Conheça seu Cliente (CSC)",
    "Conheça seu Funcionário (CSF)",
    "Conheça seu Prestador de Serviço Terceirizado (CSPST)",
    "Conheça seu Parceiro (CSP)",
    "Monitoramento, Seleção, Análise e Comunicação (MSAC)",
    "Sanções CSNU (CSNU)",
    "Treinamento (TREIN)",
    "Desenvolvimento de Cultura Organizacional (DCO)",
    "Mecanismos de Acompanhamento (MAC)",
    "Auditoria (AUD)",
    "Outro",
)
