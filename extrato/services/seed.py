# extrato/services/seed.py
# Role: Default reference data (banks, payment methods, category taxonomy)
#       and an idempotent loader for it.

import json
import logging

from sqlalchemy.orm import Session

from models import Bank, Category, PaymentMethod, User
from extrato.services.import_helpers import slugify

logger = logging.getLogger(__name__)

# (id, code, name). Ids are fixed so API clients can hardcode them.
BANKS = [
    (1, "CEF", "Caixa Econômica Federal"),
    (2, "BBDC4", "Bradesco"),
    (3, "ITUB4", "Itaú Unibanco"),
    (4, "BBAS3", "Banco do Brasil"),
    (5, "SANB11", "Santander"),
    (6, "NU", "Nubank"),
    (7, "BIDI11", "Banco Inter"),
    (8, "C6", "C6 Bank"),
    (9, "PAGS", "PagBank"),
    (10, "MELI", "Mercado Pago"),
    (11, "PICPAY", "PicPay"),
]

# (code, label, aliases)
PAYMENT_METHODS = [
    ("PIX", "PIX", ["PIX", "QR PIX", "QRPIX", "CHAVE PIX"]),
    ("TED", "TED", ["TED"]),
    ("DOC", "DOC", ["DOC"]),
    ("TEF", "TEF Interna", ["TEF", "ENTRE CONTAS", "INTRA", "INTRABANCARIA"]),
    ("BOLETO", "Boleto", ["BOLETO"]),
    ("CARTAO_DEBITO", "Cartão de Débito", ["DEBITO", "CARTAO DEBITO", "COMPRA DEB"]),
    ("CARTAO_CREDITO", "Cartão de Crédito", ["CREDITO", "CARTAO CREDITO", "COMPRA CRED", "FATURA CARTAO"]),
    ("SAQUE", "Saque", ["SAQUE", "ATM", "CAIXA ELETRONICO"]),
    ("TARIFA", "Tarifa/Encargo", ["TARIFA", "ANUIDADE", "IOF", "JUROS", "MULTA", "PACOTE SERVICOS"]),
    ("OUTRO", "Outro", ["OUTRO", "NA", "DESCONHECIDO"]),
]

# (name, kind, [subcategory names])
CATEGORIES = [
    ("Alimentação", "spend", ["Mercado", "Restaurantes", "Delivery", "Padaria"]),
    ("Transporte", "spend", ["Combustível", "Aplicativos", "Transporte público", "Estacionamento"]),
    ("Moradia", "spend", ["Aluguel", "Condomínio", "Energia", "Água", "Internet", "Gás"]),
    ("Saúde", "spend", ["Farmácia", "Consultas", "Plano de saúde", "Academia"]),
    ("Lazer", "spend", ["Streaming", "Viagens", "Eventos", "Jogos"]),
    ("Compras", "spend", ["Vestuário", "Eletrônicos", "Casa", "Presentes"]),
    ("Educação", "spend", ["Cursos", "Livros", "Mensalidade"]),
    ("Renda", "income", ["Salário", "Freelance", "Reembolso", "Outros recebimentos"]),
    ("Investimentos", "invest", ["Aporte", "Resgate", "Rendimentos"]),
    ("Transferências", "transfer", ["Transferência interna", "Transferência para terceiros"]),
    ("Cartão de Crédito", "transfer", ["Pagamento de fatura"]),
    ("Tarifas e encargos", "fee", ["Tarifas bancárias", "IOF", "Juros", "Anuidade"]),
    ("Outros", "spend", ["Não classificado"]),
]

DEFAULT_USER = (1, "Usuário padrão", "usuario@localhost")


def subcategory_slug(parent_name: str, name: str) -> str:
    return slugify(f"{parent_name}-{name}")


def seed_reference_data(db: Session) -> dict:
    """
    Insert the default banks, payment methods, categories and user.

    Rows are matched by code / slug, so running this again only adds what is
    missing. Returns how many rows of each kind were created.
    """
    created = {"banks": 0, "payment_methods": 0, "categories": 0, "users": 0}

    existing_banks = {b.code for b in db.query(Bank).all()}
    for bank_id, code, name in BANKS:
        if code in existing_banks:
            continue
        db.add(Bank(id=bank_id, code=code, name=name))
        created["banks"] += 1

    existing_methods = {pm.code for pm in db.query(PaymentMethod).all()}
    for code, label, aliases in PAYMENT_METHODS:
        if code in existing_methods:
            continue
        db.add(PaymentMethod(code=code, label=label, aliases=json.dumps(aliases, ensure_ascii=False)))
        created["payment_methods"] += 1

    db.flush()

    by_slug = {c.slug: c for c in db.query(Category).all()}
    for name, kind, children in CATEGORIES:
        slug = slugify(name)
        parent = by_slug.get(slug)
        if parent is None:
            parent = Category(name=name, slug=slug, kind=kind)
            db.add(parent)
            db.flush()
            by_slug[slug] = parent
            created["categories"] += 1

        for child in children:
            child_slug = subcategory_slug(name, child)
            if child_slug in by_slug:
                continue
            sub = Category(name=child, slug=child_slug, kind=kind, parent_id=parent.id)
            db.add(sub)
            by_slug[child_slug] = sub
            created["categories"] += 1

    user_id, user_name, user_email = DEFAULT_USER
    if db.get(User, user_id) is None:
        db.add(User(id=user_id, name=user_name, email=user_email))
        created["users"] += 1

    db.commit()

    if any(created.values()):
        logger.info("Seeded reference data: %s", created)
    return created
