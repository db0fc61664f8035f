"""Built-in study plan templates.

Verse text is the King James Version. Grace and Gospel run 21 days; the other
three only have a 7-day track, so a 21-day request for them yields 7 days.
"""


def _day(day_number, title, verse_reference, verse_text, content, reflection):
    return {
        "day_number": day_number,
        "title": title,
        "content": content,
        "reflection": reflection,
        "prayer": None,
        "verse_reference": verse_reference,
        "verse_text": verse_text,
    }


EPH_2_8_9 = (
    "For by grace are ye saved through faith; and that not of yourselves: it is the gift of God: "
    "Not of works, lest any man should boast."
)
ROM_6_14 = "For sin shall not have dominion over you: for ye are not under the law, but under grace."
JOHN_1_14 = (
    "And the Word was made flesh, and dwelt among us, (and we beheld his glory, the glory as of the "
    "only begotten of the Father,) full of grace and truth."
)
ONE_PET_1_18_19 = (
    "Forasmuch as ye know that ye were not redeemed with corruptible things, as silver and gold, from "
    "your vain conversation received by tradition from your fathers; But with the precious blood of "
    "Christ, as of a lamb without blemish and without spot:"
)
HEB_4_15 = (
    "For we have not an high priest which cannot be touched with the feeling of our infirmities; but "
    "was in all points tempted like as we are, yet without sin."
)
HEB_4_16 = (
    "Let us therefore come boldly unto the throne of grace, that we may obtain mercy, and find grace "
    "to help in time of need."
)
ROM_1_16 = (
    "For I am not ashamed of the gospel of Christ: for it is the power of God unto salvation to every "
    "one that believeth; to the Jew first, and also to the Greek."
)

GRACE_DAYS = [
    _day(1, "What is Grace?", "Ephesians 2:8-9", EPH_2_8_9,
         "Grace is God's favour given freely to people who could never earn it. Salvation is received "
         "as a gift, which leaves no room for boasting and every reason for gratitude.",
         "Where do you still try to earn God's approval? What would it look like to receive it as a gift?"),
    _day(2, "Grace in the Old Testament", "Genesis 6:8", "But Noah found grace in the eyes of the LORD.",
         "Grace did not begin in the New Testament. In a corrupt generation Noah found favour with God, "
         "and that favour came before his obedience, not because of it.",
         "How does seeing grace from Genesis onward change how you read the Old Testament?"),
    _day(3, "The Cost of Grace", "1 Peter 1:18-19", ONE_PET_1_18_19,
         "Grace is free to us but was costly to God. Peter sets silver and gold beside the blood of "
         "Christ to show how precious our redemption is.",
         "How does remembering the cost of grace shape the way you live today?"),
    _day(4, "Living by Grace", "Romans 6:14", ROM_6_14,
         "Grace does not only forgive; it breaks the rule of sin. Living under grace means walking in "
         "a new freedom rather than returning to old masters.",
         "Which habit still feels like it has dominion over you? Bring it honestly to God."),
    _day(5, "Grace and Truth", "John 1:14", JOHN_1_14,
         "In Jesus grace and truth meet perfectly. He never softens truth to be kind, and never uses "
         "truth without kindness.",
         "Do you lean more toward grace or toward truth with others? How can you hold both?"),
    _day(6, "Extending Grace to Others", "Colossians 3:13",
         "Forbearing one another, and forgiving one another, if any man have a quarrel against any: even "
         "as Christ forgave you, so also do ye.",
         "Those who receive grace are called to pass it on. Forgiveness flows from remembering how much "
         "we ourselves have been forgiven.",
         "Is there someone you need to forgive? What step could you take this week?"),
    _day(7, "Sufficient Grace", "2 Corinthians 12:9",
         "And he said unto me, My grace is sufficient for thee: for my strength is made perfect in "
         "weakness. Most gladly therefore will I rather glory in my infirmities, that the power of "
         "Christ may rest upon me.",
         "Paul's weakness was not removed, yet he found grace enough to carry it. God's strength shows "
         "most clearly where ours runs out.",
         "What weakness could become a place where Christ's power rests on you?"),
    _day(8, "Grace vs. Works", "Galatians 2:21",
         "I do not frustrate the grace of God: for if righteousness come by the law, then Christ is dead "
         "in vain.",
         "If we could make ourselves righteous, the cross would be unnecessary. Adding our works to "
         "grace quietly empties it.",
         "In what subtle ways do you add performance to the gospel?"),
    _day(9, "Growing in Grace", "2 Peter 3:18",
         "But grow in grace, and in the knowledge of our Lord and Saviour Jesus Christ. To him be glory "
         "both now and for ever. Amen.",
         "Grace is where the Christian life starts and also the soil it grows in. Knowing Jesus better "
         "is how that growth happens.",
         "How have you grown in grace over the last year?"),
    _day(10, "Grace for Every Season", "Hebrews 4:16", HEB_4_16,
         "There is no season in which grace runs dry. We are invited to come boldly, not because we are "
         "strong, but because our need is met at the throne.",
         "What need could you bring boldly to God today?"),
    _day(11, "Grace and Humility", "James 4:6",
         "But he giveth more grace. Wherefore he saith, God resisteth the proud, but giveth grace unto "
         "the humble.",
         "Pride closes our hands while humility opens them. God keeps giving more grace to those who "
         "know they need it.",
         "Where might pride be keeping you from receiving grace?"),
    _day(12, "The Grace of Giving", "2 Corinthians 8:1",
         "Moreover, brethren, we do you to wit of the grace of God bestowed on the churches of Macedonia;",
         "Paul calls the generosity of poor churches a grace. Giving becomes an overflow of what God "
         "has already given us.",
         "How could generosity become a response to grace rather than an obligation?"),
    _day(13, "Common Grace", "Matthew 5:45",
         "That ye may be the children of your Father which is in heaven: for he maketh his sun to rise on "
         "the evil and on the good, and sendeth rain on the just and on the unjust.",
         "Sunlight and rain fall on everyone. God's kindness to all people shows his character and "
         "calls us to the same generosity.",
         "Where do you see God's common grace around you this week?"),
    _day(14, "Resisting Grace", "Acts 7:51",
         "Ye stiffnecked and uncircumcised in heart and ears, ye do always resist the Holy Ghost: as your "
         "fathers did, so do ye.",
         "Stephen warned his hearers that it is possible to resist the Spirit's work. A hardened heart "
         "can turn away from the very grace it needs.",
         "Is there an area where you sense the Spirit's nudge but keep resisting?"),
    _day(15, "The Throne of Grace", "Hebrews 4:15-16", f"{HEB_4_15} {HEB_4_16}",
         "Our high priest understands temptation from the inside. Because he sympathises with us, the "
         "throne we approach is a throne of grace.",
         "How does knowing Jesus understands your struggles change how you pray?"),
    _day(16, "Grace and the Law", "Galatians 3:24-25",
         "Wherefore the law was our schoolmaster to bring us unto Christ, that we might be justified by "
         "faith. But after that faith is come, we are no longer under a schoolmaster.",
         "The law served as a guardian that led us to Christ. It shows us our need, while grace meets "
         "that need in him.",
         "How has God's law shown you your need for Christ?"),
    _day(17, "Falling from Grace", "Galatians 5:4",
         "Christ is become of no effect unto you, whosoever of you are justified by the law; ye are "
         "fallen from grace.",
         "To fall from grace in Paul's sense is to go back to law-keeping as the way to be right with "
         "God. It is a warning against a performance-based faith.",
         "Are there rules you rely on for your standing with God?"),
    _day(18, "The Grace Gift of Salvation", "Romans 6:23",
         "For the wages of sin is death; but the gift of God is eternal life through Jesus Christ our Lord.",
         "Wages are earned while gifts are received. Paul sets the two side by side so we see how "
         "different grace is from what we deserve.",
         "How does thinking of eternal life as a gift affect your gratitude?"),
    _day(19, "Multiplied Grace", "2 Peter 1:2",
         "Grace and peace be multiplied unto you through the knowledge of God, and of Jesus our Lord,",
         "Peter prays for grace to be multiplied, not just given. As we know God more, his grace and "
         "peace increase in our lives.",
         "Where do you long for more of God's peace right now?"),
    _day(20, "The God of All Grace", "1 Peter 5:10",
         "But the God of all grace, who hath called us unto his eternal glory by Christ Jesus, after that "
         "ye have suffered a while, make you perfect, stablish, strengthen, settle you.",
         "Suffering is not the end of the story. The God of all grace promises to restore and establish "
         "those he has called.",
         "What suffering do you need to entrust to the God of all grace?"),
    _day(21, "Living Under Grace", "Romans 6:14", ROM_6_14,
         "Three weeks on, the same truth stands: sin is no longer your master. Living under grace is a "
         "daily choice to trust what God has already done.",
         "What is one way you will keep living under grace after this study ends?"),
]

GOSPEL_DAYS = [
    _day(1, "The Problem - Sin", "Romans 3:23", "For all have sinned, and come short of the glory of God;",
         "The gospel begins with honest news about us. Everyone falls short of God's glory, which "
         "means everyone needs rescue.",
         "Why is it important to understand sin before understanding grace?"),
    _day(2, "God's Character - Holiness and Love", "Romans 3:26",
         "To declare, I say, at this time his righteousness: that he might be just, and the justifier of "
         "him which believeth in Jesus.",
         "At the cross God remains perfectly just while justifying sinners. His holiness and his love "
         "are not in tension there.",
         "How does the cross show both God's justice and his mercy?"),
    _day(3, "The Solution - Jesus Christ", "1 Corinthians 15:3-4",
         "For I delivered unto you first of all that which I also received, how that Christ died for our "
         "sins according to the scriptures; And that he was buried, and that he rose again the third "
         "day according to the scriptures:",
         "Paul summarises the gospel as first importance: Christ died, was buried and rose again. Our "
         "hope rests on these events.",
         "Which part of this summary means the most to you today?"),
    _day(4, "The Response - Faith and Repentance", "Mark 1:15",
         "And saying, The time is fulfilled, and the kingdom of God is at hand: repent ye, and believe "
         "the gospel.",
         "Jesus called people to turn and to trust. Repentance and faith are two sides of one response "
         "to the good news.",
         "What does ongoing repentance look like in your daily life?"),
    _day(5, "The Result - Justification", "Romans 5:1",
         "Therefore being justified by faith, we have peace with God through our Lord Jesus Christ:",
         "Justification is God's verdict that we are righteous in Christ. The result is peace with God, "
         "not a fragile truce.",
         "How does peace with God affect the way you face guilt?"),
    _day(6, "The Transformation - New Life", "2 Corinthians 5:17",
         "Therefore if any man be in Christ, he is a new creature: old things are passed away; behold, "
         "all things are become new.",
         "The gospel does not just change our record; it changes us. In Christ a new creation has begun.",
         "What old things is God making new in you?"),
    _day(7, "The Mission - Sharing the Gospel", "Romans 1:16", ROM_1_16,
         "Paul was not ashamed of the gospel because he knew its power. Good news is meant to be shared.",
         "Who in your life might need to hear this good news?"),
    _day(8, "Creation and Fall", "Romans 5:12",
         "Wherefore, as by one man sin entered into the world, and death by sin; and so death passed upon "
         "all men, for that all have sinned:",
         "The story of the gospel reaches back to Eden. Through one man sin and death entered the world "
         "and spread to all.",
         "How does the story of the fall help explain the brokenness you see?"),
    _day(9, "The Prophecies of Christ", "Isaiah 53:5",
         "But he was wounded for our transgressions, he was bruised for our iniquities: the chastisement "
         "of our peace was upon him; and with his stripes we are healed.",
         "Centuries before the cross, Isaiah described a servant who would suffer for others. The "
         "gospel fulfils what God promised long ago.",
         "What does it mean to you that Christ's wounds bring healing?"),
    _day(10, "The Incarnation", "John 1:14", JOHN_1_14,
         "God did not save us from a distance. The Word became flesh and lived among us, full of grace "
         "and truth.",
         "How does the incarnation show God's nearness to you?"),
    _day(11, "The Perfect Life", "Hebrews 4:15", HEB_4_15,
         "Jesus was tempted in every way yet without sin. His perfect life is credited to those who "
         "trust him.",
         "How does Christ's sinless life give you confidence before God?"),
    _day(12, "The Cross - Substitution", "1 Peter 3:18",
         "For Christ also hath once suffered for sins, the just for the unjust, that he might bring us to "
         "God, being put to death in the flesh, but quickened by the Spirit:",
         "The just died for the unjust. Jesus took our place so that he might bring us to God.",
         "What does it mean that Christ took your place?"),
    _day(13, "The Cross - Propitiation", "1 John 2:2",
         "And he is the propitiation for our sins: and not for ours only, but also for the sins of the "
         "whole world.",
         "Propitiation means Jesus fully satisfied God's just wrath against sin. Nothing remains to be "
         "paid.",
         "How does knowing your debt is fully paid affect your worship?"),
    _day(14, "The Cross - Reconciliation", "2 Corinthians 5:18-19",
         "And all things are of God, who hath reconciled us to himself by Jesus Christ, and hath given to "
         "us the ministry of reconciliation; To wit, that God was in Christ, reconciling the world unto "
         "himself, not imputing their trespasses unto them; and hath committed unto us the word of "
         "reconciliation.",
         "The cross turns enemies into friends of God. Those reconciled are given a ministry of "
         "reconciliation.",
         "Where could you be an agent of reconciliation this week?"),
    _day(15, "The Cross - Redemption", "1 Peter 1:18-19", ONE_PET_1_18_19,
         "To redeem is to buy back. We were purchased not with silver or gold but with the precious "
         "blood of Christ.",
         "How does being bought at such a price shape your sense of worth?"),
    _day(16, "The Resurrection - Victory Over Death", "1 Corinthians 15:17",
         "And if Christ be not raised, your faith is vain; ye are yet in your sins.",
         "Everything hangs on the empty tomb. Because Christ is raised, our faith is not in vain and "
         "death does not have the last word.",
         "How does the resurrection give you hope in the face of loss?"),
    _day(17, "The Ascension - Christ's Present Ministry", "Hebrews 7:25",
         "Wherefore he is able also to save them to the uttermost that come unto God by him, seeing he "
         "ever liveth to make intercession for them.",
         "Jesus did not finish his work and disappear. He lives to intercede for his people right now.",
         "What difference does it make that Jesus is praying for you?"),
    _day(18, "The Holy Spirit's Work", "Romans 8:16",
         "The Spirit itself beareth witness with our spirit, that we are the children of God:",
         "The Spirit assures believers that they belong to God. This inner witness steadies us when "
         "doubts come.",
         "When have you sensed the Spirit's assurance?"),
    _day(19, "Adoption as Sons", "Galatians 4:4-5",
         "But when the fulness of the time was come, God sent forth his Son, made of a woman, made under "
         "the law, To redeem them that were under the law, that we might receive the adoption of sons.",
         "The gospel does more than forgive; it brings us into God's family. We are adopted and given "
         "the full rights of children.",
         "How does seeing yourself as God's child change your prayers?"),
    _day(20, "Eternal Security", "John 10:28-29",
         "And I give unto them eternal life; and they shall never perish, neither shall any man pluck "
         "them out of my hand. My Father, which gave them me, is greater than all; and no man is able to "
         "pluck them out of my Father's hand.",
         "Those who belong to Christ are held in the Father's hand. Our security rests on his grip, not "
         "ours.",
         "What fears could you release in light of this promise?"),
    _day(21, "The Gospel's Continuing Power", "Romans 1:16", ROM_1_16,
         "The gospel is not only the door into the Christian life but the power for all of it. The same "
         "news that saved you keeps transforming you.",
         "How will you keep returning to the gospel after these 21 days?"),
]

PRAYER_FASTING_DAYS = [
    _day(1, "The Secret Place", "Matthew 6:6",
         "But thou, when thou prayest, enter into thy closet, and when thou hast shut thy door, pray to "
         "thy Father which is in secret; and thy Father which seeth in secret shall reward thee openly.",
         "Jesus invites us into private prayer with the Father. What happens in the secret place is seen "
         "and valued by God.",
         "Where and when could you set aside a quiet place to pray?"),
    _day(2, "Rising Early to Pray", "Mark 1:35",
         "And in the morning, rising up a great while before day, he went out, and departed into a "
         "solitary place, and there prayed.",
         "Even in busy seasons Jesus made time to be alone with the Father. His example shows prayer as "
         "a priority, not an afterthought.",
         "What would it take to give God the first part of your day?"),
    _day(3, "Fasting with a Glad Face", "Matthew 6:17-18",
         "But thou, when thou fastest, anoint thine head, and wash thy face; That thou appear not unto "
         "men to fast, but unto thy Father which is in secret: and thy Father, which seeth in secret, "
         "shall reward thee openly.",
         "Fasting is for God's eyes, not for an audience. Jesus assumes his followers will fast and asks "
         "them to do it humbly.",
         "Is there something you could set aside for a time to focus on God?"),
    _day(4, "Persistent Prayer", "Luke 18:1",
         "And he spake a parable unto them to this end, that men ought always to pray, and not to faint;",
         "Jesus told the parable of the persistent widow so we would keep praying and not lose heart.",
         "What request have you stopped bringing to God that you could take up again?"),
    _day(5, "When Words Fail", "Romans 8:26",
         "Likewise the Spirit also helpeth our infirmities: for we know not what we should pray for as we "
         "ought: but the Spirit itself maketh intercession for us with groanings which cannot be "
         "uttered.",
         "When we do not know how to pray, the Spirit intercedes for us. Weak prayers are still heard.",
         "How does this verse encourage you when prayer feels difficult?"),
    _day(6, "Praying Together", "Matthew 18:20",
         "For where two or three are gathered together in my name, there am I in the midst of them.",
         "Prayer is personal but not only private. Christ promises his presence when believers gather in "
         "his name.",
         "Who could you invite to pray with you this week?"),
    _day(7, "A Life of Prayer", "1 Thessalonians 5:17", "Pray without ceasing.",
         "Praying without ceasing means living in ongoing conversation with God. Prayer becomes the air "
         "we breathe rather than a task we complete.",
         "What small rhythms could help you pray throughout the day?"),
]

LOVE_COMPASSION_DAYS = [
    _day(1, "We Love Because He First Loved", "1 John 4:19", "We love him, because he first loved us.",
         "Our love for God and others is always a response. It begins with receiving his love first.",
         "How have you experienced God's love this week?"),
    _day(2, "The Greatest Commandments", "Mark 12:30-31",
         "And thou shalt love the Lord thy God with all thy heart, and with all thy soul, and with all "
         "thy mind, and with all thy strength: this is the first commandment. And the second is like, "
         "namely this, Thou shalt love thy neighbour as thyself. There is none other commandment greater "
         "than these.",
         "Jesus summed up the law in love for God and love for neighbour. The two belong together.",
         "Which of these two commandments is harder for you right now?"),
    _day(3, "Love in Deed and Truth", "1 John 3:18",
         "My little children, let us not love in word, neither in tongue; but in deed and in truth.",
         "Love is proven in action. John calls us beyond kind words to practical care.",
         "What is one concrete act of love you could do today?"),
    _day(4, "Loving Your Enemies", "Matthew 5:44",
         "But I say unto you, Love your enemies, bless them that curse you, do good to them that hate "
         "you, and pray for them which despitefully use you, and persecute you;",
         "Jesus asks for a love that reaches even those who oppose us. Praying for them is where it "
         "often starts.",
         "Who is difficult for you to love? Could you pray for them by name?"),
    _day(5, "Moved with Compassion", "Matthew 9:36",
         "But when he saw the multitudes, he was moved with compassion on them, because they fainted, and "
         "were scattered abroad, as sheep having no shepherd.",
         "Jesus saw crowds as weary sheep and was moved. Compassion begins with really seeing people.",
         "Who around you is weary and in need of compassion?"),
    _day(6, "The Greatest Love", "John 15:13",
         "Greater love hath no man than this, that a man lay down his life for his friends.",
         "Jesus defined love by laying down his life. Our love takes the shape of his sacrifice.",
         "What might it mean for you to lay down your life for others in small ways?"),
    _day(7, "Love Never Fails", "1 Corinthians 13:8",
         "Charity never faileth: but whether there be prophecies, they shall fail; whether there be "
         "tongues, they shall cease; whether there be knowledge, it shall vanish away.",
         "Gifts and knowledge pass away, but love endures. It is the one thing that lasts into eternity.",
         "How will you keep growing in love after this week?"),
]

FAITH_ACTION_DAYS = [
    _day(1, "Faith That Works", "James 2:17", "Even so faith, if it hath not works, is dead, being alone.",
         "James reminds us that living faith shows itself in action. Works do not save, but saving faith "
         "works.",
         "Where does your faith need to show up in action?"),
    _day(2, "Doing What He Says", "Luke 6:46",
         "And why call ye me, Lord, Lord, and do not the things which I say?",
         "Calling Jesus Lord means following what he says. Obedience is the natural language of trust.",
         "Is there something Jesus has asked of you that you have not yet done?"),
    _day(3, "Serving Like Jesus", "Mark 10:45",
         "For even the Son of man came not to be ministered unto, but to minister, and to give his life a "
         "ransom for many.",
         "Jesus came to serve, not to be served. His followers measure greatness by service.",
         "How could you serve someone this week without being asked?"),
    _day(4, "Ambassadors for Christ", "2 Corinthians 5:20",
         "Now then we are ambassadors for Christ, as though God did beseech you by us: we pray you in "
         "Christ's stead, be ye reconciled to God.",
         "An ambassador represents a king in a foreign land. We carry Christ's message of reconciliation "
         "wherever we go.",
         "Where are you called to represent Christ right now?"),
    _day(5, "Cheerful Generosity", "2 Corinthians 9:7",
         "Every man according as he purposeth in his heart, so let him give; not grudgingly, or of "
         "necessity: for God loveth a cheerful giver.",
         "God cares about the heart behind our giving. Generosity is meant to be glad, not forced.",
         "What would cheerful generosity look like in your life?"),
    _day(6, "Standing Firm", "Daniel 1:8",
         "But Daniel purposed in his heart that he would not defile himself with the portion of the "
         "king's meat, nor with the wine which he drank: therefore he requested of the prince of the "
         "eunuchs that he might not defile himself.",
         "Daniel decided in his heart before the pressure came. Faithfulness often rests on decisions "
         "made ahead of time.",
         "What conviction do you need to settle in your heart now?"),
    _day(7, "Faith Under Trial", "James 1:2-3",
         "My brethren, count it all joy when ye fall into divers temptations; Knowing this, that the "
         "trying of your faith worketh patience.",
         "Trials test faith and grow endurance. James invites us to meet them with a settled joy.",
         "How might God be using a current trial to grow your faith?"),
]

STUDY_TEMPLATES = {
    "template_grace": {
        "id": "template_grace",
        "title": "Understanding Grace",
        "description": "Explore God's unmerited favour from Genesis to the epistles and what it means to live under grace.",
        "days": GRACE_DAYS,
    },
    "template_gospel": {
        "id": "template_gospel",
        "title": "The Gospel",
        "description": "Walk through the good news from the problem of sin to the power of the resurrection.",
        "days": GOSPEL_DAYS,
    },
    "template_prayer_fasting": {
        "id": "template_prayer_fasting",
        "title": "Prayer & Fasting",
        "description": "Learn the rhythms of private prayer, persistence and fasting from the life of Jesus.",
        "days": PRAYER_FASTING_DAYS,
    },
    "template_love_compassion": {
        "id": "template_love_compassion",
        "title": "Love & Compassion",
        "description": "Discover the love of God and how it shapes our love for neighbours and enemies.",
        "days": LOVE_COMPASSION_DAYS,
    },
    "template_faith_action": {
        "id": "template_faith_action",
        "title": "Faith in Action",
        "description": "See how living faith shows itself in obedience, service and generosity.",
        "days": FAITH_ACTION_DAYS,
    },
}

TEMPLATE_OPTIONS = [
    {"id": t["id"], "title": t["title"], "description": t["description"], "max_duration": len(t["days"])}
    for t in STUDY_TEMPLATES.values()
]


def get_template(template_id: str) -> dict | None:
    return STUDY_TEMPLATES.get(template_id)


def plan_title(template: dict, duration: int) -> str:
    label = "Journey" if duration == 7 else "Deep Dive"
    return f"{duration}-Day {label}: {template['title']}"


def build_plan_from_template(template_id: str, duration: int) -> dict | None:
    template = get_template(template_id)
    if not template or duration > len(template["days"]):
        return None
    days = [dict(day) for day in template["days"][:duration]]
    return {
        "title": plan_title(template, duration),
        "description": template["description"],
        "days": days,
    }
